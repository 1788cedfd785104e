"""Run submission endpoint."""

import structlog
from fastapi import APIRouter

from ..dependencies.services import GatewayDep
from ..models.execution import CompileRequest, CompileResponse

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/compile", summary="Run code for a connected client")
async def compile_code(request: CompileRequest, gateway: GatewayDep):
    """Start a sandboxed run whose output streams to the given connection.

    The response only acknowledges the launch; output, the completion banner
    and the exit status arrive on the connection's socket.
    """
    session = await gateway.submit_run(
        request.connection_id, request.code, request.language
    )
    response = CompileResponse(
        connection_id=session.connection_id, socket_id=session.connection_id
    )
    return response.model_dump(by_alias=True)
