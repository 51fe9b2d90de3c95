"""LLM-backed `hugo.toml` generator.

A stateless call to an OpenAI-compatible endpoint through LangChain's
ChatOpenAI client. The assistant is advisory only: its output is shown
to the user and never committed by the pipeline.
"""

import logging
import tomllib
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


CONFIG_SYSTEM_PROMPT = """You are an expert in generating hugo.toml files based on user input.

Given the project title, blog name, and user prompt, generate a hugo.toml
file that is well-structured and includes relevant configurations.

Ensure the generated hugo.toml includes basic configurations such as title,
baseURL, languageCode, and theme.

Respond with the complete hugo.toml file content only, without explanations."""


class HugoConfigRequest(BaseModel):
    """Input of the config assistant.

    Attributes:
        title: Project title.
        site_name: Blog name.
        prompt: Free-form guidance from the user.
    """

    title: str = Field(..., min_length=1, max_length=200)
    site_name: str = Field(..., min_length=1, max_length=100)
    prompt: str = Field(..., min_length=1, max_length=4000)


class ConfigGenerationError(Exception):
    """Raised when the assistant cannot produce a config.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception, if any.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


def _build_user_prompt(request: HugoConfigRequest) -> str:
    return (
        f"Project Title: {request.title}\n"
        f"Blog Name: {request.site_name}\n"
        f"User Prompt: {request.prompt}"
    )


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code block if the model added one."""
    text = text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else ""
    if text.endswith("```"):
        text = text[:-3]
    return text.strip() + "\n"


class HugoConfigGenerator:
    """Generates `hugo.toml` text from a title, site name and prompt.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Name of the model to use for inference.
        timeout: Request timeout in seconds.
        temperature: Sampling temperature for the LLM.

    Example:
        >>> generator = HugoConfigGenerator(llm_url="http://localhost:8000/v1", model_name="...")
        >>> toml_text = await generator.generate(
        ...     HugoConfigRequest(title="Notes", site_name="notes", prompt="Dark theme")
        ... )
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        timeout: float = 60.0,
        temperature: float = 0.2,
        llm: Optional[ChatOpenAI] = None,
    ):
        self.llm_url = llm_url
        self.model_name = model_name
        self.timeout = timeout
        self.temperature = temperature
        self._llm = llm

    @property
    def llm(self) -> ChatOpenAI:
        """Get the LLM client, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                base_url=self.llm_url,
                model=self.model_name,
                temperature=self.temperature,
                timeout=self.timeout,
                api_key="not-needed",
            )
        return self._llm

    async def generate(self, request: HugoConfigRequest) -> str:
        """Generate `hugo.toml` text.

        Raises:
            ConfigGenerationError: If the LLM call fails or returns text
                that is not valid TOML.
        """
        messages = [
            SystemMessage(content=CONFIG_SYSTEM_PROMPT),
            HumanMessage(content=_build_user_prompt(request)),
        ]

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(
                "Config assistant LLM call failed",
                extra={"site_name": request.site_name, "error": str(e)},
            )
            raise ConfigGenerationError(f"LLM invocation failed: {e}", cause=e) from e

        content = response.content if isinstance(response.content, str) else str(response.content)
        if not content.strip():
            raise ConfigGenerationError("Empty response from LLM")

        config = _strip_code_fence(content)
        try:
            tomllib.loads(config)
        except tomllib.TOMLDecodeError as e:
            raise ConfigGenerationError(f"Generated config is not valid TOML: {e}", cause=e) from e

        logger.info(
            "Generated hugo.toml",
            extra={"site_name": request.site_name, "length": len(config)},
        )
        return config
