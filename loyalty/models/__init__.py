from loyalty.models.pos_provider import PosProvider
from loyalty.models.shop import Shop
from loyalty.models.app_user import AppUser
from loyalty.models.shop_user import ShopUser
from loyalty.models.shop_audit_log import ShopAuditLog
from loyalty.models.product import Product
from loyalty.models.loyalty_account import LoyaltyAccount
from loyalty.models.coupon import Coupon, CouponLineItem, CouponRedemption
