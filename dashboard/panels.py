# dashboard/panels.py
"""
View-model builders for the admin dashboard.

Every function here is pure: it takes (part of) the analytics object produced
by ``admin_metrics.compile_analytics`` and returns plain dicts/strings for the
template. Nothing is fetched, cached or mutated.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple


# ---- primitives -----------------------------------------------------------------
def percentage(count: float, total: float) -> float:
    return count / total * 100 if total else 0.0

def bar_width(count: float, max_count: float) -> float:
    return count / max(max_count, 1) * 100

def format_currency(amount: float, symbol: str = "₹") -> str:
    return f"{symbol}{amount:,.0f}" if float(amount).is_integer() else f"{symbol}{amount:,.2f}"

def format_storage_mb(num_bytes: float) -> str:
    return f"{num_bytes / 1024 / 1024:.1f} MB"

def format_change(growth: float) -> str:
    sign = "+" if growth > 0 else ""
    return f"{sign}{growth:.1f}% vs last month"


# ---- threshold classifiers ----------------------------------------------------
def palm_success_status(rate: float) -> str:
    if rate >= 95:
        return "excellent"
    if rate >= 90:
        return "good"
    if rate >= 80:
        return "warning"
    return "critical"

def message_limit_status(users_at_limit: int) -> str:
    if users_at_limit <= 5:
        return "good"
    if users_at_limit <= 20:
        return "warning"
    return "critical"

def overall_health(success_rate: float, users_at_limit: int) -> Tuple[str, str]:
    """(label, status) combining palm success and quota pressure."""
    if success_rate >= 95 and users_at_limit == 0:
        return "Excellent", "excellent"
    if success_rate >= 90 and users_at_limit <= 5:
        return "Good", "good"
    if success_rate >= 80 and users_at_limit <= 20:
        return "Fair", "warning"
    return "Needs Attention", "critical"

def payment_success_label(rate: float) -> Tuple[str, str]:
    """(label, color)."""
    if rate >= 90:
        return "Excellent", "green"
    if rate >= 75:
        return "Good", "yellow"
    return "Needs improvement", "red"

def revenue_growth_label(growth: float) -> str:
    if growth >= 10:
        return "Excellent growth"
    if growth >= 5:
        return "Good growth"
    if growth >= 0:
        return "Steady growth"
    return "Needs attention"

def rating_label(avg: float) -> str:
    if avg >= 4.5:
        return "Excellent"
    if avg >= 4.0:
        return "Very Good"
    if avg >= 3.5:
        return "Good"
    if avg >= 3.0:
        return "Fair"
    return "Needs Improvement"


# ---- panels -----------------------------------------------------------------------
def _bars(rows: Iterable[Dict[str, Any]], key: str) -> List[Dict[str, Any]]:
    rows = list(rows)
    top = max((r.get("count", 0) for r in rows), default=0)
    total = sum(r.get("count", 0) for r in rows)
    return [
        {
            "label": r.get(key),
            "count": r.get("count", 0),
            "width": round(bar_width(r.get("count", 0), top), 1),
            "percent": round(percentage(r.get("count", 0), total), 1),
        }
        for r in rows
    ]

def metric_cards(analytics: Dict[str, Any]) -> List[Dict[str, Any]]:
    users = analytics["userMetrics"]
    revenue = analytics["revenueMetrics"]
    palm = analytics["serviceUsage"]["palmReadings"]
    return [
        {"title": "Total Users", "value": f"{users['totalUsers']:,}",
         "subtitle": f"{users['newUsersThisMonth']} new this month"},
        {"title": "Paid Users", "value": f"{users['paidUsers']:,}",
         "subtitle": f"{percentage(users['paidUsers'], users['totalUsers']):.1f}% conversion"},
        {"title": "Revenue", "value": format_currency(revenue["totalRevenue"]),
         "subtitle": format_change(revenue["revenueGrowth"])},
        {"title": "Palm Readings", "value": f"{palm['total']:,}",
         "subtitle": f"{palm['successRate']:.1f}% success"},
    ]

def user_panel(users: Dict[str, Any]) -> Dict[str, Any]:
    growth = users.get("userGrowthData") or []
    top = max((g["users"] for g in growth), default=0)
    return {
        "active": users["activeUsersThisWeek"],
        "paid_percent": round(percentage(users["paidUsers"], users["totalUsers"]), 1),
        "free_percent": round(percentage(users["freeUsers"], users["totalUsers"]), 1),
        "growth": [{"date": g["date"], "users": g["users"], "width": round(bar_width(g["users"], top), 1)}
                   for g in growth],
    }

def revenue_panel(revenue: Dict[str, Any]) -> Dict[str, Any]:
    label, color = payment_success_label(revenue["paymentSuccessRate"])
    return {
        "total": format_currency(revenue["totalRevenue"]),
        "this_month": format_currency(revenue["revenueThisMonth"]),
        "change": format_change(revenue["revenueGrowth"]),
        "growth_label": revenue_growth_label(revenue["revenueGrowth"]),
        "aov": format_currency(revenue["averageOrderValue"]),
        "success_rate": f"{revenue['paymentSuccessRate']:.1f}%",
        "success_label": label,
        "success_color": color,
        "coupon": revenue.get("couponImpact") or {},
    }

def feedback_panel(feedback: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "total": feedback["totalFeedback"],
        "average": f"{feedback['averageRating']:.1f}",
        "average_label": rating_label(feedback["averageRating"]),
        "pending": feedback["pendingFeedback"],
        "ratings": _bars(feedback["ratingDistribution"], "rating"),
        "categories": _bars(feedback["categoryBreakdown"], "category"),
    }

def health_panel(analytics: Dict[str, Any]) -> Dict[str, Any]:
    health = analytics["systemHealth"]
    rate = analytics["serviceUsage"]["palmReadings"]["successRate"]
    label, status = overall_health(rate, health["usersAtMessageLimit"])
    storage = health.get("storageUsage") or {}
    return {
        "overall_label": label,
        "overall_status": status,
        "palm_status": palm_success_status(rate),
        "palm_failures": health["palmReadingFailures"],
        "limit_status": message_limit_status(health["usersAtMessageLimit"]),
        "users_at_limit": health["usersAtMessageLimit"],
        "palm_images": format_storage_mb(storage.get("palmImages", 0)),
        "total_storage": format_storage_mb(storage.get("totalStorage", 0)),
    }

def build_dashboard(analytics: Dict[str, Any]) -> Dict[str, Any]:
    """Everything the dashboard template renders."""
    return {
        "cards": metric_cards(analytics),
        "users": user_panel(analytics["userMetrics"]),
        "service": analytics["serviceUsage"],
        "revenue": revenue_panel(analytics["revenueMetrics"]),
        "feedback": feedback_panel(analytics["feedbackMetrics"]),
        "health": health_panel(analytics),
    }

def coupon_panel(coupons: Dict[str, Any]) -> Dict[str, Any]:
    rate = float(coupons.get("utilizationRate") or 0)
    return {**coupons, "bar_width": min(100.0, rate)}
