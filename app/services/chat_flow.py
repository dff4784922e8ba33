import logging
import re

from app.models.chat_flow import (
    ChatFlowRequest,
    ChatFlowResponse,
    FlowAction,
    FlowOption,
)

logger = logging.getLogger(__name__)

LIST_MODE_OPTIONS = ("Create a NEW list", "Use an EXISTING list")
FOLDER_MODE_OPTIONS = (
    "Directly in the space (no folder)",
    "In an existing folder",
    "Create a new folder",
)
HELP_WORDS = ("help", "options", "available")
_NUMBER_RE = re.compile(r"^\d+$")


def _numbered(options: list[str] | tuple[str, ...]) -> str:
    return "\n".join(f"{index}. {option}" for index, option in enumerate(options, start=1))


def _choose(choice: str, message: str, selected: FlowOption | None = None) -> ChatFlowResponse:
    return ChatFlowResponse(
        message=message,
        flow_action=FlowAction(type="select_option", choice=choice),
        selected=selected,
    )


def _keyword_choice(text: str, keywords: dict[str, tuple[str, ...]]) -> str | None:
    for choice, words in keywords.items():
        if text == choice or any(word in text for word in words):
            return choice
    return None


def select_option(items: list[FlowOption], message: str) -> tuple[int, FlowOption] | None:
    """Map a numeric reply or a (partial) name onto a 1-based option index."""
    text = message.strip()
    if _NUMBER_RE.match(text):
        index = int(text)
        if 1 <= index <= len(items):
            return index, items[index - 1]
        return None

    lowered = text.lower()
    if not lowered:
        return None
    for index, item in enumerate(items, start=1):
        name = item.name.lower()
        if name in lowered or lowered in name:
            return index, item
    return None


def _select_from(items: list[FlowOption], message: str, kind: str, next_prompt: str) -> ChatFlowResponse:
    listing = _numbered([item.name for item in items])
    if not items:
        return ChatFlowResponse(message=f"No {kind}s available yet, loading {kind}s...")

    lowered = message.lower()
    match = None if any(word in lowered for word in HELP_WORDS) else select_option(items, message)
    if match is None:
        return ChatFlowResponse(
            message=f"Available {kind}s:\n{listing}\n\nChoose by number (1-{len(items)})"
        )

    index, item = match
    return _choose(str(index), f'You selected the {kind} "{item.name}".{next_prompt}', item)


def interpret_message(request: ChatFlowRequest) -> ChatFlowResponse:
    stage = request.stage
    message = request.message.strip()
    text = message.lower()
    options = request.available_options
    logger.info("Chat flow stage=%s waiting=%s message=%r", stage, request.waiting_for_input, message)

    if not stage or not request.waiting_for_input:
        if any(word in text for word in HELP_WORDS):
            return ChatFlowResponse(message="To start a deployment, say 'new list' or 'deploy'")
        return ChatFlowResponse(message="How can I help? To deploy, say 'new list' or 'deploy'")

    if stage == "initial":
        choice = _keyword_choice(text, {"1": ("new",), "2": ("exist",)})
        if choice == "1":
            if options.spaces:
                spaces = _numbered([space.name for space in options.spaces])
                return _choose("1", f"OK! Creating a new list.\n\nChoose a space:\n{spaces}")
            return _choose("1", "OK! Creating a new list. Loading spaces...")
        if choice == "2":
            return _choose("2", "OK! Using an existing list.")
        return ChatFlowResponse(message=f"Please choose:\n\n{_numbered(LIST_MODE_OPTIONS)}")

    if stage == "select_space":
        return _select_from(
            options.spaces,
            message,
            "space",
            f"\n\nChoose:\n{_numbered(FOLDER_MODE_OPTIONS)}",
        )

    if stage == "select_folder_option":
        choice = _keyword_choice(
            text,
            {"1": ("direct",), "2": ("exist",), "3": ("new",)},
        )
        if choice == "1":
            return _choose("1", "Creating the list directly in the space...")
        if choice == "2":
            if options.folders:
                folders = _numbered([folder.name for folder in options.folders])
                return _choose("2", f"OK! Choose a folder:\n\n{folders}")
            return _choose("2", "Loading folders...")
        if choice == "3":
            return _choose("3", "Type the name of the new folder:")
        return ChatFlowResponse(message=f"Please choose:\n\n{_numbered(FOLDER_MODE_OPTIONS)}")

    if stage == "create_new_folder":
        if not message:
            return ChatFlowResponse(message="Type the name of the new folder:")
        return ChatFlowResponse(
            message=f'Creating folder "{message}"...',
            flow_action=FlowAction(type="input_text", text=message),
        )

    if stage == "select_existing_folder":
        return _select_from(options.folders, message, "folder", " Creating the list...")

    return _select_from(options.lists, message, "list", " Deploying to this list...")
