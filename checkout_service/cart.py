from decimal import Decimal
from typing import Dict, List

from .schemas import CartLine


class Cart:
    """Session-scoped cart. Lines are keyed by menu item id."""

    def __init__(self):
        self._lines: Dict[int, CartLine] = {}

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def add(self, item_id: int, name: str, unit_price: Decimal, restaurant_id: int, quantity: int = 1):
        line = self._lines.get(item_id)
        if line is not None:
            quantity += line.quantity
        self._lines[item_id] = CartLine(
            item_id=item_id,
            name=name,
            unit_price=unit_price,
            quantity=quantity,
            restaurant_id=restaurant_id,
        )

    def update_quantity(self, item_id: int, quantity: int):
        if quantity < 1:
            self.remove(item_id)
            return
        line = self._lines[item_id]
        self._lines[item_id] = line.model_copy(update={"quantity": quantity})

    def remove(self, item_id: int):
        self._lines.pop(item_id, None)

    def clear(self):
        self._lines.clear()

    def __len__(self):
        return sum(line.quantity for line in self._lines.values())
