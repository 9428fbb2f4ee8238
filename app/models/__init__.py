#users and auth
from app.models.users.user_models import User
from app.models.support.activity_models import UserActivity

# Billing
from app.models.billing.quotation_models import Quotation, QuotationItem
