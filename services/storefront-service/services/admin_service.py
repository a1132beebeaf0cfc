"""Back-office reporting queries."""
from decimal import Decimal
from typing import Any, Dict, List
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from models import Order, Product, User, Role


class AdminService:
    """Dashboard and customer listings for administrators."""

    def dashboard(self, db: Session) -> Dict[str, Any]:
        """Store-wide totals and the ten most recent orders."""
        revenue = db.query(func.coalesce(func.sum(Order.total), 0)).scalar()
        recent = (
            db.query(Order)
            .options(selectinload(Order.user))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(10)
            .all()
        )
        return {
            "total_orders": db.query(Order).count(),
            "total_revenue": Decimal(str(revenue)),
            "total_products": db.query(Product).count(),
            "total_customers": db.query(User).filter(User.role == Role.CUSTOMER).count(),
            "recent_orders": [
                {
                    "id": order.id,
                    "total": order.total,
                    "status": order.status,
                    "created_at": order.created_at,
                    "customer_name": order.user.name,
                    "customer_email": order.user.email
                }
                for order in recent
            ]
        }

    def list_customers(self, db: Session) -> List[Dict[str, Any]]:
        """All accounts, newest first, with their order counts."""
        rows = (
            db.query(User, func.count(Order.id))
            .outerjoin(Order, Order.user_id == User.id)
            .group_by(User.id)
            .order_by(User.created_at.desc(), User.id.desc())
            .all()
        )
        return [
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "role": user.role,
                "created_at": user.created_at,
                "order_count": count
            }
            for user, count in rows
        ]
