"""
System instructions for the helpdesk chat employees.
Builds the per-employee, per-personality developer prompt for one turn.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from helpdesk_chat.core.constants import DEFAULT_PERSONALITY_LEVEL

DEVELOPER_PROMPT = """
You are a helpful AI assistant working for AI Knowledge Desk. You are helping users with their queries.
If they need up to date information, you can use the web search tool to search the web for relevant information.
If they ask for something that is related to their own data or documents, use the file search tool to search their files for relevant information.
When appropriate, you can use code interpreter to solve problems, generate charts, and process data.
"""


@dataclass(frozen=True)
class Employee:
    """An AI employee persona a chat is bound to."""

    id: str
    name: str
    role: str
    capabilities: tuple[str, ...]


EMPLOYEES: dict[str, Employee] = {
    "charlie": Employee(
        id="charlie",
        name="Charlie",
        role="Customer Support",
        capabilities=(
            "Handle Support Tickets",
            "Customer Communication",
            "Resolve inquiries efficiently",
        ),
    ),
    "marquavious": Employee(
        id="marquavious",
        name="Marquavious",
        role="Live Chat Specialist",
        capabilities=(
            "Live Chat Support",
            "Business Operations",
            "Real-time customer interactions",
        ),
    ),
    "emma": Employee(
        id="emma",
        name="Emma",
        role="Knowledge Management",
        capabilities=(
            "Create Articles",
            "Organize Information",
            "Maintain knowledge base",
        ),
    ),
    "sung-wen": Employee(
        id="sung-wen",
        name="Sung Wen",
        role="Training Specialist",
        capabilities=(
            "Data Analysis",
            "Business Forecasting",
            "Strategic insights",
        ),
    ),
}

# Personality levels 0..3, from strictly professional to playful
PERSONALITY_TONES: tuple[str, ...] = (
    "Keep a strictly professional tone. Be concise and factual, and avoid small talk, humor and emoji.",
    "Keep a professional but approachable tone. Be clear and courteous, with light warmth where it helps.",
    "Be friendly and conversational. Show warmth and encouragement while staying focused on the task.",
    "Be upbeat and playful. Light humor and enthusiasm are welcome as long as answers stay accurate and useful.",
)

EMPLOYEE_INSTRUCTIONS_TEMPLATE = """
Your name is {name} and your role is {role}.
You specialize in: {capabilities}.
When the user asks for something their helpdesk data can answer, use your functions to look it up or change it instead of guessing.
If a function fails, tell the user what went wrong and suggest a next step.
"""


def clamp_personality_level(level: int | None) -> int:
    """Clamp a personality level into 0..3; None selects the default."""
    if level is None:
        return DEFAULT_PERSONALITY_LEVEL
    return max(0, min(len(PERSONALITY_TONES) - 1, int(level)))


def format_today(today: date) -> str:
    """E.g. ``Today is Monday, March 3, 2025.``"""
    return f"Today is {today.strftime('%A')}, {today.strftime('%B')} {today.day}, {today.year}."


def get_developer_prompt(today: date | None = None) -> str:
    """Generic assistant prompt followed by today's date."""
    return f"{DEVELOPER_PROMPT.strip()}\n\n{format_today(today or date.today())}"


def build_instructions(
    employee_id: str | None,
    personality_level: int | None = DEFAULT_PERSONALITY_LEVEL,
    today: date | None = None,
) -> str:
    """Build the system instructions for one turn.

    Unknown employee ids fall back to the generic prompt; the personality tone
    is appended in either case.
    """
    parts = [DEVELOPER_PROMPT.strip()]

    employee = EMPLOYEES.get(employee_id or "")
    if employee is not None:
        parts.append(
            EMPLOYEE_INSTRUCTIONS_TEMPLATE.format(
                name=employee.name,
                role=employee.role,
                capabilities=", ".join(employee.capabilities),
            ).strip()
        )

    parts.append(PERSONALITY_TONES[clamp_personality_level(personality_level)])
    parts.append(format_today(today or date.today()))
    return "\n\n".join(parts)
