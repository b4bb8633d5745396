from typing import Dict, Any, List, Optional

from turnstream.domain.models.stream_events import (
    ToolEvent, ToolEventStatus, WebSearchPayload, WebSearchResultItem, WebFetchPayload
)


def web_search_end_event(
    content: List[Dict[str, Any]],
    tool_input: Optional[Dict[str, Any]] = None,
    call_id: Optional[str] = None
) -> ToolEvent:
    """End event for a provider-side web search from its result blocks"""
    tool_input = tool_input or {}
    query = tool_input.get("query") or ""
    error = next((block for block in content if block.get("type") == "web_search_tool_result_error"), None)

    if error is not None:
        error_code = error.get("error_code") or "unknown"
        return ToolEvent(
            name="web_search",
            status=ToolEventStatus.END,
            input=tool_input,
            result=f"Web search error: {error_code}",
            payload=WebSearchPayload(query=query, error_code=error_code),
            call_id=call_id,
        )

    results = [
        WebSearchResultItem(url=block.get("url") or "", title=block.get("title") or "", page_age=block.get("page_age"))
        for block in content if block.get("type") == "web_search_result"
    ]
    noun = "result" if len(results) == 1 else "results"
    return ToolEvent(
        name="web_search",
        status=ToolEventStatus.END,
        input=tool_input,
        result=f"Found {len(results)} {noun}",
        payload=WebSearchPayload(query=query, results=results),
        call_id=call_id,
    )


def web_fetch_end_event(
    content: Dict[str, Any],
    tool_input: Optional[Dict[str, Any]] = None,
    call_id: Optional[str] = None
) -> Optional[ToolEvent]:
    """End event for a provider-side web fetch, or None for unknown blocks"""
    tool_input = tool_input or {}
    if content.get("type") == "web_fetch_tool_error":
        return ToolEvent(
            name="web_fetch",
            status=ToolEventStatus.END,
            input=tool_input,
            result=f"Web fetch error: {content.get('error_code') or 'unknown'}",
            call_id=call_id,
        )
    if content.get("type") != "web_fetch_result":
        return None

    url = content.get("url") or ""
    document = content.get("content") if isinstance(content.get("content"), dict) else {}
    return ToolEvent(
        name="web_fetch",
        status=ToolEventStatus.END,
        input=tool_input,
        result=f"Fetched content from: {url}",
        payload=WebFetchPayload(url=url, title=document.get("title"), retrieved_at=content.get("retrieved_at")),
        call_id=call_id,
    )
