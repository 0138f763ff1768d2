"""Session dispatch: submit one unit of work against a context."""
from __future__ import annotations

import logging

from .api import ApiClient
from .errors import AuthExpiredError, DispatchError, ProtocolError, ReflexibleError
from .models import ComputeTier, ExecutionContext, Session

logger = logging.getLogger(__name__)

DISPATCH_PATH = "/api/v1/agent/dispatch"


class SessionDispatcher:
    """Starts remote sessions. Single attempt, no retries."""

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def dispatch(
        self,
        context: ExecutionContext,
        message: str,
        tier: ComputeTier | str,
    ) -> Session:
        """Submit *message* at *tier* and return the new Session.

        Raises:
            ValueError: empty message or unknown tier (no remote call made).
            AuthExpiredError: credential rejected.
            DispatchError: the remote call failed; the cause is chained.
            ProtocolError: the response carried no session id.
        """
        if not message or not message.strip():
            raise ValueError("message must not be empty")
        tier = ComputeTier.parse(tier)

        logger.info(
            "Dispatching %s session in project %s", tier.value, context.context_id,
        )
        try:
            data = await self._api.request_json(
                "POST",
                DISPATCH_PATH,
                payload={
                    "projectId": context.context_id,
                    "message": message,
                    "computeConfig": tier.value,
                },
            )
        except AuthExpiredError:
            raise
        except ProtocolError:
            raise
        except ReflexibleError as exc:
            raise DispatchError(context.context_id, str(exc)) from exc

        session_id = data.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise ProtocolError(DISPATCH_PATH, "no session ID returned from server")

        logger.info("Session %s dispatched", session_id)
        return Session(
            session_id=session_id,
            context_id=context.context_id,
            tier=tier,
            message=message,
        )
