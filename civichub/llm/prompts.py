"""System prompt templates and message assembly for model calls."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .schemas import MODEL_INTENTS

_OUTPUT_CONTRACT = (
    "Always answer with a single JSON object and nothing else, using the keys: "
    '"intent" (one of: {intents}), '
    '"fields" (object with optional category, address, description, rt_rw, service_type, '
    "knowledge_category, complaint_id, request_number, cancel_reason, missing_info[]), "
    '"reply_text" (the message for the citizen), '
    '"guidance_text" (optional follow-up hint sent as a separate bubble), '
    '"contacts" (optional list of {{name, phone, organization, title}}), '
    '"confidence" (0..1), "sentiment" (positive|neutral|negative), '
    '"language" (ISO 639-1 code of the citizen message).'
)


class PromptTemplateStore:
    """Resolve the persona instructions per channel."""

    _DEFAULT_TEMPLATES: Mapping[str, str] = {
        "default": (
            "You are the virtual assistant of a village government office. Help citizens "
            "with public service information, complaints and service requests. Be polite, "
            "short and factual. Never invent procedures, fees or phone numbers that are not "
            "in the provided knowledge."
        ),
        "whatsapp": (
            "You are the WhatsApp assistant of a village government office. Help citizens "
            "with public service information, complaints and service requests. Keep replies "
            "short enough for a phone screen and use *bold* sparingly. Never invent "
            "procedures, fees or phone numbers that are not in the provided knowledge."
        ),
        "webchat": (
            "You are the website chat assistant of a village government office. Help citizens "
            "with public service information, complaints and service requests. Reply in short "
            "paragraphs. Never invent procedures, fees or phone numbers that are not in the "
            "provided knowledge."
        ),
    }

    def __init__(self, extra_templates: Mapping[str, str] | None = None):
        self._templates: dict[str, str] = dict(self._DEFAULT_TEMPLATES)
        if extra_templates:
            self._templates.update({k.lower(): v for k, v in extra_templates.items()})

    def resolve(self, channel: str) -> str:
        return self._templates.get(channel.lower()) or self._templates["default"]

    def system_prompt(self, channel: str) -> str:
        intents = ", ".join(sorted(intent.value for intent in MODEL_INTENTS))
        return f"{self.resolve(channel)}\n\n{_OUTPUT_CONTRACT.format(intents=intents)}"

    def build_messages(
        self,
        prompt: str,
        context: str,
        conversation_history: Sequence[Mapping[str, str]],
        *,
        channel: str = "default",
        history_limit: int = 10,
    ) -> list[dict[str, str]]:
        """Return chat messages: system prompt, recent turns, then the new message."""

        messages = [{"role": "system", "content": self.system_prompt(channel)}]
        if context:
            messages.append(
                {
                    "role": "system",
                    "content": f"Relevant knowledge for this question:\n{context}",
                }
            )
        else:
            messages.append(
                {
                    "role": "system",
                    "content": "No knowledge matched this message. If it asks for facts you "
                    "do not have, say so and suggest contacting the village office.",
                }
            )
        for turn in list(conversation_history)[-history_limit:]:
            role = turn.get("role")
            if role in {"user", "assistant"} and turn.get("content"):
                messages.append({"role": role, "content": turn["content"]})
        messages.append({"role": "user", "content": prompt})
        return messages
