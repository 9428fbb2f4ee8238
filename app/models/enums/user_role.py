# app/models/enums/user_role.py
import enum


class UserRole(str, enum.Enum):
    user = "user"
    sales_rep = "sales_rep"
    manager = "manager"
    admin = "admin"
    super_admin = "super_admin"
    client = "client"
