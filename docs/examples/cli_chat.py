import asyncio
import os
from pathlib import Path
from typing import Annotated, List

from dotenv import load_dotenv
from openai import AsyncOpenAI
from pydantic import Field

from toolcall_engine import (
    ConversationTurnController,
    OpenAIStreamClient,
    OpenAIToolRegistry,
    ToolCallManager,
    ToolCallManagerSettings,
    ToolCallState,
    UserMessage,
)
from toolcall_engine.core.logger import setup_logging
from toolcall_engine.core.messages import BaseMessage
from toolcall_engine.core.tools.execution import ToolCallEventType, ToolCallLifecycleEvent

# Load environment variables
load_dotenv()

VAULT = Path(os.getenv("VAULT_DIR", "./vault")).resolve()

registry = OpenAIToolRegistry()


@registry.tool
def list_files(folder: Annotated[str, Field(description="Folder relative to the vault root")] = ".") -> List[str]:
    """List the files in a vault folder."""
    return sorted(str(p.relative_to(VAULT)) for p in (VAULT / folder).iterdir())


@registry.tool
def read_file(path: Annotated[str, Field(description="File path relative to the vault root")]) -> str:
    """Read a text file from the vault."""
    return (VAULT / path).read_text(encoding="utf-8")


@registry.tool
def write_file(
    path: Annotated[str, Field(description="File path relative to the vault root")],
    content: Annotated[str, Field(description="New file content")],
) -> str:
    """Write a text file in the vault, replacing any existing content."""
    target = VAULT / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return f"Wrote {len(content)} characters to {path}."


async def ask_for_approval(manager: ToolCallManager, event: ToolCallLifecycleEvent) -> None:
    call = event.tool_call
    answer = await asyncio.to_thread(
        input, f"\nApprove {call.name}({call.request.raw_arguments})? [y]es / [n]o / [a]lways: "
    )
    answer = answer.strip().lower()
    if answer in ("a", "always"):
        manager.trust_for_session(call.name)
    elif answer in ("y", "yes"):
        manager.approve(call.id)
    else:
        manager.deny(call.id, "Denied from the command line.")


async def main() -> None:
    """
    Chat with an OpenAI model that can browse and edit a local vault folder.
    """
    setup_logging()
    print("Welcome to the CLI Chat (OpenAI)!")

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        print("Error: OPENAI_API_KEY not found in environment variables.")
        return

    VAULT.mkdir(parents=True, exist_ok=True)
    client = OpenAIStreamClient(
        client=AsyncOpenAI(api_key=api_key),
        model_name=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        sys_instruction=f"You are a helpful assistant working in the vault at {VAULT}.",
    )
    manager = ToolCallManager(registry, settings=ToolCallManagerSettings.from_env())
    controller = ConversationTurnController(client, manager)

    def on_state(event: ToolCallLifecycleEvent) -> None:
        if event.tool_call.state is ToolCallState.PENDING_APPROVAL:
            asyncio.get_running_loop().create_task(ask_for_approval(manager, event))
        elif event.tool_call.is_terminal:
            print(f"  [{event.tool_call.name}] {event.tool_call.state.value}")

    manager.on(ToolCallEventType.STATE_CHANGED, on_state)
    print(f"Using vault {VAULT}.")

    history: List[BaseMessage] = []

    print("\nStart chatting! Type 'exit' or 'quit' to stop.")
    try:
        while True:
            user_input = (await asyncio.to_thread(input, "\nYou: ")).strip()
            if user_input.lower() in ["exit", "quit"]:
                print("Goodbye!")
                break

            if not user_input:
                continue

            history.append(UserMessage(content=user_input))
            try:
                outcome = await controller.run(history)
                print(f"Assistant: {outcome.content}")
                history = outcome.history
            except Exception as e:
                print(f"An error occurred: {e}")
    finally:
        await manager.aclose()


if __name__ == "__main__":
    asyncio.run(main())
