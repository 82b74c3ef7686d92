from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel


class ToolDefinition(BaseModel):
    """
    A tool the model may call: its public contract plus the executor behind it.

    Attributes:
        name: The unique name of the tool, exactly as the model will emit it.
        description: A brief description of what the tool does.
        func: The executor. Called with the parsed arguments as keyword arguments;
              may be sync or async and may raise.
        parameters: JSON-schema-like object describing the arguments.
        args_model: Optional Pydantic model used for validating and coercing arguments.
    """

    name: str
    description: str
    func: Callable
    parameters: Optional[Any] = None
    args_model: Optional[Type[BaseModel]] = None

    def to_openai(self) -> Dict[str, Any]:
        """Render as an OpenAI ``tools`` entry."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }
