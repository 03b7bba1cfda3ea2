from storebot.models.user import User
from storebot.models.product import Product
from storebot.models.order import Order
from storebot.models.processed_deposit import ProcessedDeposit

__all__ = ["User", "Product", "Order", "ProcessedDeposit"]
