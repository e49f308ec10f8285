from app.models.profile import Profile
from app.models.subscription_package import SubscriptionPackage
from app.models.product_slot import ProductSlot
from app.models.credit_package import CreditPackage
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_history import SubscriptionHistory
from app.models.product import Product, ProductImage, ProductStatus
from app.models.user_ban import UserBan
from app.models.category import Category
from app.models.site_setting import SiteSetting
from app.models.transaction import Transaction, TransactionStatus
from app.models.payout import Payout, PayoutStatus
from app.models.message import Message
from app.models.audit_log import AuditLog

__all__ = [
    "Profile",
    "SubscriptionPackage",
    "ProductSlot",
    "CreditPackage",
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionHistory",
    "Product",
    "ProductImage",
    "ProductStatus",
    "UserBan",
    "Category",
    "SiteSetting",
    "Transaction",
    "TransactionStatus",
    "Payout",
    "PayoutStatus",
    "Message",
    "AuditLog",
]
