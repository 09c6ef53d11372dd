"""
Email Router
============

POST /api/email/test    - Send a test email (rate limited)
POST /api/email/export  - Email an export the dashboard already built

Author: ApiAlly Team
"""

import asyncio
import logging
import smtplib

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from apially.models import ExportEmailRequest, SmtpTestRequest
from apially.routers.dependencies import get_services, rate_limited, verify_dashboard_token
from apially.services import AppServices
from apially.utils.validation import validate_email

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/email",
    tags=["email"],
    dependencies=[Depends(verify_dashboard_token)],
)


@router.post("/test", dependencies=[Depends(rate_limited("email_test"))])
async def send_test_email(request: SmtpTestRequest, services: AppServices = Depends(get_services)):
    """
    Check the SMTP settings by sending a real email.

    On failure the response explains why and shows the (password-free)
    SMTP settings that were used.
    """
    if not request.test_email or not request.test_email.strip():
        raise HTTPException(status_code=400, detail="Test email address is required")
    to_email = request.test_email.strip()
    if not validate_email(to_email):
        raise HTTPException(status_code=400, detail="Invalid email address")

    try:
        await asyncio.to_thread(services.email.send_test_email, to_email)
    except (RuntimeError, smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP test to {to_email} failed: {type(e).__name__}: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to send test email",
                "details": str(e),
                "config": services.email.public_config(),
            },
        )

    return {"success": True, "message": f"Test email sent successfully to {to_email}"}


@router.post("/export")
async def send_export_email(request: ExportEmailRequest, services: AppServices = Depends(get_services)):
    config = request.export_config
    if not config.email or not validate_email(config.email):
        raise HTTPException(status_code=400, detail="A valid email address is required")

    try:
        sent = await asyncio.to_thread(
            services.email.send_export_email,
            to_email=config.email,
            export_name=config.name,
            export_format=config.format.value,
            frequency=config.frequency.value,
            record_count=request.record_count,
            content=request.export_content,
        )
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Export email '{config.name}' failed: {type(e).__name__}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to send export email: {e}")

    if not sent:
        raise HTTPException(status_code=500, detail="Email service is not configured")
    return {"success": True, "message": f"Export email sent to {config.email}"}
