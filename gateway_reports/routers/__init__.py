"""
API routers package
"""

from gateway_reports.routers.reports import router as reports_router
from gateway_reports.routers.admin import router as admin_router
from gateway_reports.routers.outcomes import router as outcomes_router
