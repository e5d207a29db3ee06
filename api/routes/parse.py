from __future__ import annotations

import queue
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from discussion_reader.parsing import WorkerBusyError

from api.dependencies import get_parse_timeout, get_worker_thread

router = APIRouter(tags=["parse"])


@router.post("/parse")
def parse_page(message: Dict[str, Any] = Body(...)):
    """
    Parse discussion page markup synchronously on the worker thread and return
    the `parse` reply. A `parseError` reply maps to 422.
    """
    worker_thread = get_worker_thread()
    html = message.get("html", message.get("text"))
    try:
        reply = worker_thread.request_parse(
            html,
            config=message.get("config"),
            globals_=message.get("globals") or message.get("g"),
            timeout=get_parse_timeout(),
        )
    except WorkerBusyError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except queue.Empty:
        raise HTTPException(status_code=504, detail="Parse timed out")

    if reply.get("type") == "parseError":
        raise HTTPException(status_code=422, detail=reply.get("message"))
    return reply
