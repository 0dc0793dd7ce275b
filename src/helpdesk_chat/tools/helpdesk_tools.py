"""
Named functions backed by the helpdesk platform REST API.

Each employee persona gets its own set of platform operations (knowledge base,
inbox, live chat, training). Tenant-scoped calls carry ``uid`` and
``selectedCompany`` taken from the turn's tenant, never from the model.
"""

from __future__ import annotations

import string

from dataclasses import dataclass
from typing import Any

import httpx

from helpdesk_chat.models.api_models import FunctionResponse
from helpdesk_chat.models.chat_models import TenantContext
from helpdesk_chat.tools.registry import ToolContext, ToolRegistry, ToolSpec
from helpdesk_chat.utils.logger import logger


def _string(description: str, **extra: Any) -> dict[str, Any]:
    return {"type": "string", "description": description, **extra}


def _number(description: str) -> dict[str, Any]:
    return {"type": "number", "description": description}


def _boolean(description: str) -> dict[str, Any]:
    return {"type": "boolean", "description": description}


_LIMIT = _number("Number of results to retrieve (optional)")
_LAST_DOC_ID = _string("Last document ID for pagination (optional, used to get next page of results)")


@dataclass(frozen=True)
class PlatformEndpoint:
    """A tenant-scoped platform operation exposed to the model as a function.

    ``path`` may contain ``{param}`` placeholders filled from the arguments.
    ``required`` of None means every parameter is required.
    """

    name: str
    description: str
    method: str
    path: str
    parameters: dict[str, dict[str, Any]]
    required: tuple[str, ...] | None = None


class HelpdeskApiClient:
    """Calls the helpdesk platform with tenant identity injected."""

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    @staticmethod
    def _path_fields(path: str) -> list[str]:
        return [field for _, field, _, _ in string.Formatter().parse(path) if field]

    async def request(
        self,
        method: str,
        path: str,
        arguments: dict[str, Any],
        tenant: TenantContext | None = None,
    ) -> FunctionResponse:
        payload = {key: value for key, value in arguments.items() if value is not None}

        path_fields = self._path_fields(path)
        missing = [name for name in path_fields if name not in payload]
        if missing:
            return FunctionResponse(success=False, error=f"Missing required parameters: {', '.join(missing)}")
        url = path.format(**{name: payload.pop(name) for name in path_fields})

        if tenant is not None:
            payload["uid"] = tenant.user_id
            payload["selectedCompany"] = tenant.company_id

        if method == "GET":
            response = await self.http_client.request(method, url, params=payload)
        else:
            response = await self.http_client.request(method, url, json=payload)

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.is_error:
            logger.warning(f"Helpdesk API {method} {url} returned {response.status_code}")
            return FunctionResponse(
                success=False,
                data=body if body else None,
                error=f"Helpdesk API returned HTTP {response.status_code}",
            )
        return FunctionResponse(success=True, data=body)


# ============================================================================
# Per-employee platform operations
# ============================================================================

EMMA_ENDPOINTS = (
    PlatformEndpoint(
        "create_category",
        "Create a new category in the knowledge base. "
        "Use this when the user wants to organize articles or content into a new category.",
        "POST",
        "/api/category/create",
        {
            "name": _string("The name of the category"),
            "description": _string("A description of what this category contains"),
            "link": _string("A URL-friendly identifier for the category (letters, numbers, hyphens, underscores)"),
        },
    ),
    PlatformEndpoint(
        "get_categories",
        "Retrieve categories from the knowledge base. Use this to list all categories.",
        "GET",
        "/api/category",
        {"limit": _LIMIT, "lastDocId": _LAST_DOC_ID},
        required=(),
    ),
    PlatformEndpoint(
        "search_categories",
        "Search for categories in the knowledge base by name or description.",
        "GET",
        "/api/category/search",
        {
            "query": _string("Search query to find categories by name or description"),
            "limit": _LIMIT,
            "lastDocId": _LAST_DOC_ID,
        },
        required=("query",),
    ),
    PlatformEndpoint(
        "update_category",
        "Update an existing category's name, description, or link.",
        "PUT",
        "/api/category/update",
        {
            "categoryId": _string("The ID of the category to update"),
            "name": _string("New name for the category (optional)"),
            "description": _string("New description for the category (optional)"),
            "link": _string("New URL-friendly identifier for the category (optional)"),
        },
        required=("categoryId",),
    ),
    PlatformEndpoint(
        "delete_category",
        "Delete a category from the knowledge base permanently.",
        "DELETE",
        "/api/category/delete",
        {"categoryId": _string("The ID of the category to delete")},
    ),
    PlatformEndpoint(
        "get_articles",
        "Retrieve articles from the knowledge base, optionally filtered by category.",
        "GET",
        "/api/articles",
        {
            "categoryId": _string("Category ID or comma-separated list of category IDs to filter by (optional)"),
            "limit": _LIMIT,
            "lastDocId": _LAST_DOC_ID,
        },
        required=(),
    ),
    PlatformEndpoint(
        "search_articles",
        "Search for articles in the knowledge base by title, description, or content.",
        "GET",
        "/api/articles/search",
        {
            "query": _string("Search query to find articles by title, description, or content"),
            "categoryId": _string("Category ID or comma-separated list of category IDs to filter by (optional)"),
            "limit": _LIMIT,
            "lastDocId": _LAST_DOC_ID,
        },
        required=("query",),
    ),
    PlatformEndpoint(
        "get_article",
        "Get a specific article by its ID.",
        "GET",
        "/api/articles/{articleId}",
        {"articleId": _string("The ID of the article to retrieve")},
    ),
    PlatformEndpoint(
        "create_article",
        "Create a new article in a category. Use this when the user wants to add new content to the knowledge base.",
        "POST",
        "/api/articles/create",
        {
            "categoryId": _string("The ID of the category where the article should be created"),
            "title": _string("The title of the article"),
            "description": _string("A brief description of the article"),
            "link": _string("A URL-friendly identifier for the article"),
            "content": _string("The HTML content of the article (optional)"),
            "rawText": _string("The plain text content of the article (optional)"),
            "published": _boolean("Whether the article should be published (optional, default is false)"),
        },
        required=("categoryId", "title", "description", "link"),
    ),
    PlatformEndpoint(
        "update_article",
        "Update an existing article, or move it to a different category.",
        "PUT",
        "/api/articles/update",
        {
            "categoryId": _string("The current category ID of the article"),
            "articleId": _string("The ID of the article to update"),
            "title": _string("New title for the article (optional)"),
            "description": _string("New description for the article (optional)"),
            "link": _string("New URL-friendly identifier for the article (optional)"),
            "published": _boolean("Whether the article should be published (optional)"),
            "fav": _boolean("Whether the article should be marked as favorite (optional)"),
            "content": _string("New HTML content for the article (optional)"),
            "rawText": _string("New plain text content for the article (optional)"),
            "newCategoryId": _string("New category ID to move the article to (optional)"),
        },
        required=("categoryId", "articleId"),
    ),
    PlatformEndpoint(
        "delete_article",
        "Delete an article from the knowledge base permanently.",
        "DELETE",
        "/api/articles/delete",
        {
            "categoryId": _string("The category ID where the article is located"),
            "articleId": _string("The ID of the article to delete"),
        },
    ),
)

_TICKET_ID = _string("The ID of the ticket")

CHARLIE_ENDPOINTS = (
    PlatformEndpoint(
        "get_support_tickets",
        "Retrieve support tickets from the help desk with their status.",
        "GET",
        "/api/inbox/tickets",
        {
            "limit": _LIMIT,
            "startAfter": _string("Timestamp in milliseconds for pagination (optional)"),
        },
        required=(),
    ),
    PlatformEndpoint(
        "get_ticket_messages",
        "Get the conversation history of a specific support ticket.",
        "GET",
        "/api/inbox/messages",
        {"ticketId": _TICKET_ID},
    ),
    PlatformEndpoint(
        "get_templates",
        "Retrieve all response templates available for customer replies.",
        "GET",
        "/api/inbox/templates",
        {},
    ),
    PlatformEndpoint(
        "create_template",
        "Create a new response template for customer replies.",
        "POST",
        "/api/inbox/templates",
        {
            "title": _string("The title of the template"),
            "body": _string("The body/content of the template"),
        },
    ),
    PlatformEndpoint(
        "update_template",
        "Update an existing response template's title or body.",
        "PUT",
        "/api/inbox/templates/update",
        {
            "templateId": _string("The ID of the template to update"),
            "title": _string("New title for the template (optional)"),
            "body": _string("New body/content for the template (optional)"),
        },
        required=("templateId",),
    ),
    PlatformEndpoint(
        "delete_template",
        "Delete a response template permanently.",
        "DELETE",
        "/api/inbox/templates/delete",
        {"templateId": _string("The ID of the template to delete")},
    ),
    PlatformEndpoint(
        "open_ticket",
        "Open a support ticket (set its status to Open).",
        "PUT",
        "/api/inbox/ticket/open",
        {"ticketId": _TICKET_ID},
    ),
    PlatformEndpoint(
        "close_ticket",
        "Close a support ticket (set its status to Closed).",
        "PUT",
        "/api/inbox/ticket/close",
        {"ticketId": _TICKET_ID},
    ),
    PlatformEndpoint(
        "enable_ticket_ai",
        "Turn on AI assistance for a specific ticket.",
        "PUT",
        "/api/inbox/ticket/ai/enable",
        {"ticketId": _TICKET_ID},
    ),
    PlatformEndpoint(
        "disable_ticket_ai",
        "Turn off AI assistance for a specific ticket.",
        "PUT",
        "/api/inbox/ticket/ai/disable",
        {"ticketId": _TICKET_ID},
    ),
    PlatformEndpoint(
        "get_emails",
        "Retrieve the email configurations available for sending responses.",
        "GET",
        "/api/inbox/emails",
        {},
    ),
    PlatformEndpoint(
        "send_email",
        "Send an email reply to a ticket.",
        "POST",
        "/api/inbox/emails/send",
        {
            "ticketId": _string("The ID of the ticket to send email for"),
            "to": _string("Recipient email address"),
            "subject": _string("Email subject line"),
            "message": _string("Email message body"),
            "replyToId": _string("Message ID to reply to (optional, for threading)"),
            "references": _string("Email references header for threading (optional)"),
        },
        required=("ticketId", "to", "subject", "message"),
    ),
    PlatformEndpoint(
        "get_helpdesk_settings",
        "Get helpdesk settings including subdomain, email forwarding, AI messages, and AI suggestions.",
        "GET",
        "/api/settings/helpdesk",
        {},
    ),
    PlatformEndpoint(
        "update_helpdesk_ai_suggestions",
        "Enable or disable AI response suggestions for the helpdesk.",
        "PUT",
        "/api/settings/helpdesk/ai-suggestions",
        {"aiSuggestionsOn": _boolean("Whether to enable (true) or disable (false) AI suggestions")},
    ),
    PlatformEndpoint(
        "update_helpdesk_ai_messages",
        "Enable or disable AI auto-response messages for the helpdesk.",
        "PUT",
        "/api/settings/helpdesk/ai-messages",
        {"aiMessagesOn": _boolean("Whether to enable (true) or disable (false) AI auto-responses")},
    ),
)

MARQUAVIOUS_ENDPOINTS = (
    PlatformEndpoint(
        "get_live_chat_sessions",
        "Get live chat sessions. Use this to view active or recent chat conversations with customers.",
        "GET",
        "/api/livechat/sessions",
        {
            "limit": _LIMIT,
            "startAfter": _string("Document ID for pagination (optional)"),
        },
        required=(),
    ),
    PlatformEndpoint(
        "get_live_chat_session",
        "Get a specific live chat session with all of its messages.",
        "GET",
        "/api/livechat/sessions/{sessionId}",
        {"sessionId": _string("The ID of the session to retrieve")},
    ),
    PlatformEndpoint(
        "get_live_chat_settings",
        "Get all live chat configuration settings.",
        "GET",
        "/api/settings/live-chat",
        {},
    ),
    PlatformEndpoint(
        "update_live_chat_basic_settings",
        "Update basic live chat settings: enabled status, position, theme, or size.",
        "PUT",
        "/api/settings/live-chat/basic",
        {
            "enabled": _boolean("Whether live chat is enabled (optional)"),
            "position": _string(
                "Chat bubble position (optional)",
                enum=["bottom-right", "bottom-left", "top-right", "top-left"],
            ),
            "theme": _string("Chat theme (optional)", enum=["default", "minimal", "rounded", "modern"]),
            "size": _string("Chat size (optional)", enum=["small", "medium", "large"]),
        },
        required=(),
    ),
    PlatformEndpoint(
        "update_live_chat_content_settings",
        "Update the live chat welcome message, placeholder text, company name, or offline message.",
        "PUT",
        "/api/settings/live-chat/content",
        {
            "welcomeMessage": _string("Welcome message shown when chat opens (optional)"),
            "placeholderText": _string("Placeholder text in the message input field (optional)"),
            "companyName": _string("Company name displayed in the chat (optional)"),
            "offlineMessage": _string("Message shown when chat is offline (optional)"),
        },
        required=(),
    ),
)

SUNG_WEN_ENDPOINTS = (
    PlatformEndpoint(
        "get_training_rules",
        "Get all training rules and their status.",
        "GET",
        "/api/training/rules",
        {},
    ),
    PlatformEndpoint(
        "add_training_rule",
        "Add a new training rule describing how the AI should behave or respond.",
        "POST",
        "/api/training/rules",
        {"text": _string("The rule text that describes how the AI should behave or respond")},
    ),
    PlatformEndpoint(
        "update_training_rule",
        "Update an existing training rule's text or enable/disable it.",
        "PUT",
        "/api/training/rules",
        {
            "ruleId": _string("The ID of the rule to update"),
            "text": _string("New rule text (optional)"),
            "enabled": _boolean("Whether the rule should be enabled (optional)"),
        },
        required=("ruleId",),
    ),
    PlatformEndpoint(
        "delete_training_rule",
        "Delete a training rule permanently.",
        "DELETE",
        "/api/training/rules",
        {"ruleId": _string("The ID of the rule to delete")},
    ),
    PlatformEndpoint(
        "refresh_knowledge_base",
        "Refresh the knowledge base by regenerating and uploading training data.",
        "POST",
        "/api/training/refreshknowledge",
        {
            "forceRefresh": _boolean("Force a refresh even if data hasn't changed (optional, default is false)"),
            "waitForIndexing": _boolean("Wait for files to be indexed before returning (optional, default is true)"),
        },
        required=(),
    ),
    PlatformEndpoint(
        "get_faqs",
        "Get all frequently asked questions and their answers.",
        "GET",
        "/api/training/faq",
        {},
    ),
    PlatformEndpoint(
        "create_faq",
        "Create a new frequently asked question and its answer.",
        "POST",
        "/api/training/faq",
        {
            "question": _string("The question text"),
            "answer": _string("The answer text"),
        },
    ),
    PlatformEndpoint(
        "update_faq",
        "Update an existing FAQ's question or answer, or enable/disable it.",
        "PUT",
        "/api/training/faq",
        {
            "faqId": _string("The ID of the FAQ to update"),
            "question": _string("New question text (optional)"),
            "answer": _string("New answer text (optional)"),
            "enabled": _boolean("Whether the FAQ should be enabled (optional)"),
        },
        required=("faqId",),
    ),
    PlatformEndpoint(
        "delete_faq",
        "Delete a frequently asked question permanently.",
        "DELETE",
        "/api/training/faq",
        {"faqId": _string("The ID of the FAQ to delete")},
    ),
)

EMPLOYEE_ENDPOINTS: dict[str, tuple[PlatformEndpoint, ...]] = {
    "emma": EMMA_ENDPOINTS,
    "charlie": CHARLIE_ENDPOINTS,
    "marquavious": MARQUAVIOUS_ENDPOINTS,
    "sung-wen": SUNG_WEN_ENDPOINTS,
}


# ============================================================================
# Registry construction
# ============================================================================


def endpoint_tool(client: HelpdeskApiClient, endpoint: PlatformEndpoint) -> ToolSpec:
    """Wrap a platform endpoint as a tenant-scoped ToolSpec."""

    async def handler(arguments: dict[str, Any], context: ToolContext) -> FunctionResponse:
        return await client.request(endpoint.method, endpoint.path, arguments, context.tenant)

    return ToolSpec(
        name=endpoint.name,
        description=endpoint.description,
        handler=handler,
        parameters=endpoint.parameters,
        required=endpoint.required,
        tenant_scoped=True,
    )


def shared_tools(client: HelpdeskApiClient) -> list[ToolSpec]:
    """Functions available to every employee."""

    async def get_weather(arguments: dict[str, Any], context: ToolContext) -> FunctionResponse:
        return await client.request("GET", "/api/chat/functions/get_weather", arguments)

    async def get_joke(arguments: dict[str, Any], context: ToolContext) -> FunctionResponse:
        return await client.request("GET", "/api/chat/functions/get_joke", {})

    async def escalate_to_human(arguments: dict[str, Any], context: ToolContext) -> FunctionResponse:
        tenant = context.tenant
        assert tenant is not None
        logger.warning(
            f"Escalating chat {context.chat_id} to a human: {arguments.get('reason')}",
            chat_id=context.chat_id,
            urgency=arguments.get("urgency"),
        )
        body = {
            "uid": tenant.user_id,
            "companyId": tenant.company_id,
            "chatId": context.chat_id,
            "reason": arguments.get("reason"),
            "urgency": arguments.get("urgency") or "medium",
            "summary": arguments.get("summary"),
        }
        return await client.request("POST", "/api/notify/question", body)

    return [
        ToolSpec(
            name="get_weather",
            description="Get the weather for a given location",
            handler=get_weather,
            parameters={
                "location": _string("Location to get weather for"),
                "unit": _string("Unit to get weather in", enum=["celsius", "fahrenheit"]),
            },
        ),
        ToolSpec(
            name="get_joke",
            description="Get a programming joke",
            handler=get_joke,
        ),
        ToolSpec(
            name="escalate_to_human",
            description=(
                "Escalate the conversation to a human agent. Use this when you are not 100% certain about an "
                "answer, cannot find the information needed, or when the query is complex and requires human "
                "judgment. Honesty is critical - always escalate rather than guess."
            ),
            handler=escalate_to_human,
            parameters={
                "reason": _string("Brief explanation of why escalation is needed"),
                "urgency": _string("Urgency level of the escalation", enum=["low", "medium", "high"]),
                "summary": _string("Brief summary of the issue or question for the human agent (optional)"),
            },
            required=("reason", "urgency"),
            tenant_scoped=True,
        ),
    ]


def build_default_registry(http_client: httpx.AsyncClient) -> ToolRegistry:
    """Build the immutable registry of shared and per-employee functions."""
    client = HelpdeskApiClient(http_client)
    registry = ToolRegistry(
        shared=shared_tools(client),
        employee_tools={
            employee_id: [endpoint_tool(client, endpoint) for endpoint in endpoints]
            for employee_id, endpoints in EMPLOYEE_ENDPOINTS.items()
        },
    )
    logger.info(f"Tool registry built with {len(registry)} functions")
    return registry


__all__ = [
    "EMPLOYEE_ENDPOINTS",
    "HelpdeskApiClient",
    "PlatformEndpoint",
    "build_default_registry",
    "endpoint_tool",
    "shared_tools",
]
