import logging
from typing import Optional

from azure.ai.inference import ChatCompletionsClient
from azure.ai.inference.models import SystemMessage, UserMessage
from azure.core.credentials import AzureKeyCredential

from settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Say hello!"
SYSTEM_PROMPT = (
    "You are an assistant for a resource-allocation configurator. Users manage "
    "clients, workers and tasks, define business rules and prioritization weights. "
    "Answer concisely."
)


class AgentConfigurationError(RuntimeError):
    pass


# --------- GPTAgent Wrapper ---------
class GPTAgent:
    def __init__(self, settings: Settings, client: Optional[ChatCompletionsClient] = None):
        if client is None:
            if not settings.github_token:
                raise AgentConfigurationError("Server configuration error: GITHUB_TOKEN is not set.")
            client = ChatCompletionsClient(
                endpoint=settings.github_ai_endpoint,
                credential=AzureKeyCredential(settings.github_token)
            )
        self.client = client
        self.model_name = settings.github_ai_model

    def chat_completion(self, system_prompt: str, user_prompt: str) -> str:
        messages = [
            SystemMessage(content=system_prompt),
            UserMessage(content=user_prompt)
        ]

        response = self.client.complete(
            messages=messages,
            model=self.model_name,
            temperature=0.7,
            top_p=1.0,
            max_tokens=1000
        )

        return response.choices[0].message.content

    def ask(self, prompt: Optional[str]) -> str:
        prompt = (prompt or "").strip() or DEFAULT_PROMPT
        logger.info("AI query (%d chars) sent to %s", len(prompt), self.model_name)
        return self.chat_completion(SYSTEM_PROMPT, prompt)
