from typing import Any, Dict, List

from ...core.tools.registry import ToolRegistry


class OpenAIToolRegistry(ToolRegistry):
    """
    A ToolRegistry that exports its tools in the OpenAI chat completions format.

    Every entry is ``{"type": "function", "function": {name, description, parameters}}``;
    tools without parameters get an empty object schema.
    """

    @property
    def tool_object(self) -> List[Dict[str, Any]]:
        """
        Generates the ``tools`` list for the OpenAI API from the registered tools.

        Returns:
            A list of tool dictionaries, empty when nothing is registered.
        """
        return [tool.to_openai() for tool in self.tools.values()]
