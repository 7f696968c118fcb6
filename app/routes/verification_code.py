"""
Verification code lookup
GET checks the mailbox once; POST waits for a code within a bounded window
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from pydantic import Field

from ..config import VERIFICATION_POLL_INTERVAL_SECONDS, VERIFICATION_TIMEOUT_SECONDS
from ..domain.sto.schemas import CodeResult, StoModel
from ..services.gmail_service import GmailVerificationCodeRetriever

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification-code", tags=["Verification Code"])


class WaitForCodeRequest(StoModel):
    timeout_seconds: float = Field(VERIFICATION_TIMEOUT_SECONDS, gt=0, le=120)
    poll_interval_seconds: float = Field(VERIFICATION_POLL_INTERVAL_SECONDS, gt=0, le=30)


def get_code_retriever(request: Request) -> GmailVerificationCodeRetriever:
    return request.app.state.sto.code_retriever


def _response(result: CodeResult) -> dict:
    return {
        "success": result.found,
        "code": result.code,
        "receivedAt": result.source_timestamp.isoformat() if result.source_timestamp else None,
        "error": result.error,
    }


@router.get("")
async def get_verification_code(retriever: GmailVerificationCodeRetriever = Depends(get_code_retriever)):
    return _response(await retriever.fetch_code())


@router.post("")
async def wait_for_verification_code(
    data: Optional[WaitForCodeRequest] = Body(None),
    retriever: GmailVerificationCodeRetriever = Depends(get_code_retriever),
):
    data = data or WaitForCodeRequest()
    logger.info(f"⏳ Waiting up to {data.timeout_seconds:.0f}s for a verification code")
    result = await retriever.wait_for_code(
        timeout=data.timeout_seconds, poll_interval=data.poll_interval_seconds
    )
    return _response(result)
