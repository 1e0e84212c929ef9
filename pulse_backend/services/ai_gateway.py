"""
AI Gateway Service

Generates the AI-assisted texts shown on the dashboard through an
OpenAI-compatible chat-completions endpoint:

- generate_digest(): headline, summary paragraphs and 3-5 actions for the
  pipeline digest (today / week / month)
- generate_next_step(): a concrete next step plus rationale for one deal
- generate_contact_summary(): headline and highlights for one contact

Every request asks for a JSON object response. Models do not always honour
the requested keys, so parsing accepts the Spanish and English variants seen
in practice (summary/resumen/body, actions/acciones/action_items, ...).

Callers always get a payload back. A missing API key, a non-2xx response,
unparseable JSON or an empty answer all return the caller-provided
fallbackText with usedFallback=True:

    provider="fallback"        key missing (and every next-step/contact failure)
    provider="fallback-error"  digest request failed for any other reason

Digest responses are cached per (timeframe, SHA-1 of the normalized payload)
for AI_DIGEST_CACHE_TTL_SECONDS so dashboard refreshes do not re-bill the
provider. Each invocation is logged with job, status, provider, elapsed time
and token usage.
"""

import hashlib
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from pulse_backend.core.config import Settings
from pulse_backend.models.enums import AIInvocationStatus, DigestTimeframe
from pulse_backend.models.schemas import (
    ContactSummaryRequest,
    ContactSummaryResponse,
    DigestRequest,
    DigestResponse,
    NextStepRequest,
    NextStepResponse,
)
from pulse_backend.services.pipeline_insights import NO_COMPANY_LABEL, format_eur


logger = logging.getLogger(__name__)


PROVIDER_FALLBACK = "fallback"
PROVIDER_FALLBACK_ERROR = "fallback-error"

DIGEST_TEMPERATURE = 0.4
NEXT_STEP_TEMPERATURE = 0.5
CONTACT_SUMMARY_TEMPERATURE = 0.4

# Deals and alerts included in the digest prompt
PROMPT_ITEM_LIMIT = 5

TIMEFRAME_LABELS = {
    DigestTimeframe.TODAY: "hoy",
    DigestTimeframe.WEEK: "esta semana",
    DigestTimeframe.MONTH: "este mes",
}

DIGEST_SYSTEM_PROMPT = (
    "Eres un experto en operaciones comerciales. "
    "Devuelve únicamente JSON válido con la estructura solicitada."
)
NEXT_STEP_SYSTEM_PROMPT = (
    "Eres un asistente comercial senior. Devuelve JSON válido con la estructura solicitada."
)
CONTACT_SUMMARY_SYSTEM_PROMPT = "Eres un analista comercial. Devuelve exclusivamente JSON válido."


# =============================================================================
# Errors
# =============================================================================

class MissingAIKeyError(RuntimeError):
    """OPENAI_API_KEY is not configured."""

    def __init__(self) -> None:
        super().__init__("OPENAI_API_KEY is not configured")


class AIRequestError(RuntimeError):
    """The provider call failed or returned a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


# =============================================================================
# Prompt Builders
# =============================================================================

def _display(value: Any) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def build_digest_prompt(payload: DigestRequest) -> str:
    stats = payload.stats
    timeframe_label = TIMEFRAME_LABELS[payload.timeframe]

    deal_lines = []
    for index, deal in enumerate(payload.topDeals[:PROMPT_ITEM_LIMIT], 1):
        line = (
            f"{index}. {deal.title} ({deal.company or NO_COMPANY_LABEL}) "
            f"· {deal.stage} · {deal.priority} · {deal.risk}"
        )
        if deal.amount is not None:
            line += f" · €{format_eur(deal.amount)}"
        if deal.targetCloseDate:
            line += f" · Cierre objetivo: {deal.targetCloseDate}"
        if deal.nextStep:
            line += f" · Próximo paso: {deal.nextStep}"
        deal_lines.append(line)

    alert_lines = [
        f"{index}. {alert.message} · {alert.recommendedAction}"
        for index, alert in enumerate(payload.alerts[:PROMPT_ITEM_LIMIT], 1)
    ]

    return "\n".join([
        f"Eres un assistant de Pulse CRM especializado en ventas B2B. "
        f"Genera un digest accionable para {timeframe_label}.",
        "Siempre responde en español neutro, tono profesional y conciso.",
        "No inventes datos. Usa únicamente la información suministrada.",
        "Devuelve la respuesta en **JSON válido** con la siguiente forma exacta:",
        '{',
        '  "headline": "...",',
        '  "summary": ["párrafo 1", "párrafo 2"],',
        '  "actions": ["Acción 1", "Acción 2", "Acción 3"]',
        '}',
        "Reglas para el JSON:",
        "- `headline` debe ser una frase motivadora.",
        "- `summary` debe contener 2 entradas como máximo, cada una con frases cortas (<= 2 oraciones).",
        "- `actions` debe tener entre 3 y 5 strings. Cada string comienza con un verbo en imperativo "
        "y puede incluir contexto adicional (owner, deal, fechas).",
        "- No añadas claves extra ni valores nulos.",
        "Datos numéricos de contexto:",
        f"• Deals Hot abiertos: {stats.hotDeals}",
        f"• Deals en riesgo alto: {stats.riskDeals}",
        f"• Tareas vencidas o críticas: {stats.overdueTasks}",
        "Deals prioritarios:",
        "\n".join(deal_lines) if deal_lines else "Sin deals destacados.",
        "Alertas activas:",
        "\n".join(alert_lines) if alert_lines else "Sin alertas activas.",
    ])


def build_next_step_prompt(payload: NextStepRequest) -> str:
    deal = payload.deal
    context = payload.context

    lines = [
        "Eres un assistant comercial que ayuda a reps a definir el próximo paso concreto para un deal.",
        "Responde únicamente con JSON válido usando la forma:",
        '{',
        '  "next_step": "acción concreta",',
        '  "rationale": ["motivo 1", "motivo 2", "motivo 3"]',
        '}',
        "Normas:",
        "- `next_step` debe iniciar con un verbo en imperativo y describir acción+canal+objetivo.",
        "- Incluye en `rationale` entre 2 y 3 motivos cortos que expliquen la recomendación.",
        "- No inventes datos ni añadas claves adicionales.",
        "Contexto del deal:",
        f"• Título: {deal.title}",
        f"• Empresa: {deal.company or NO_COMPANY_LABEL}",
        f"• Etapa actual: {deal.stage}",
        f"• Probabilidad declarada: {_display(deal.probability)}",
        f"• Prioridad: {_display(deal.priority)}",
        f"• Nivel de riesgo: {_display(deal.risk)}",
    ]

    if deal.amount:
        lines.append(f"• Monto estimado: €{format_eur(deal.amount)}")
    if deal.nextStep:
        lines.append(f"• Último próximo paso registrado: {deal.nextStep}")
    if deal.targetCloseDate:
        lines.append(f"• Fecha objetivo de cierre: {deal.targetCloseDate}")
    if deal.lastActivity:
        lines.append(f"• Última actividad registrada: {deal.lastActivity}")
    if context is not None and context.reasons:
        lines.append("Señales de riesgo: ")
        lines.extend(f"{index}. {reason}" for index, reason in enumerate(context.reasons, 1))
    if context is not None and context.inactivityDays is not None:
        lines.append(f"• Días sin actividad: {context.inactivityDays}")

    return "\n".join(lines)


def build_contact_summary_prompt(payload: ContactSummaryRequest) -> str:
    contact = payload.contact

    lines = [
        "Eres un assistant comercial. Resume el estado actual del contacto en JSON válido:",
        '{',
        '  "headline": "frase corta",',
        '  "highlights": ["punto 1", "punto 2", "punto 3"]',
        '}',
        "- `headline`: tono profesional con llamada a la acción.",
        "- `highlights`: entre 2 y 4 bullet points cortos (máx 15 palabras).",
        "- No inventes datos ni añadas claves extra.",
        f"Contacto: {contact.name}",
    ]

    if contact.company:
        lines.append(f"Empresa: {contact.company}")
    if contact.role:
        lines.append(f"Rol: {contact.role}")
    if contact.owner:
        lines.append(f"Owner interno: {contact.owner}")
    if contact.lastActivity:
        lines.append(f"Última actividad: {contact.lastActivity}")

    if contact.deals:
        lines.append("Deals asociados:")
        for index, deal in enumerate(contact.deals, 1):
            lines.append(
                f"{index}. {deal.title} ({deal.stage}) · {deal.status} · €{format_eur(deal.amount or 0)}"
            )
    else:
        lines.append("No tiene deals vinculados actualmente.")

    return "\n".join(lines)


def fingerprint_digest_payload(payload: DigestRequest) -> str:
    """SHA-1 over the fields that change the generated digest."""
    normalized = {
        'timeframe': payload.timeframe.value,
        'stats': payload.stats.model_dump(),
        'topDeals': [
            {
                'id': deal.id,
                'stage': deal.stage,
                'priority': deal.priority,
                'risk': deal.risk,
                'amount': deal.amount,
                'nextStep': deal.nextStep,
                'targetCloseDate': deal.targetCloseDate,
            }
            for deal in payload.topDeals
        ],
        'alerts': [
            {
                'id': alert.id,
                'severity': alert.severity,
                'priority': alert.priority,
                'message': alert.message,
            }
            for alert in payload.alerts
        ],
    }
    encoded = json.dumps(normalized, ensure_ascii=False, separators=(',', ':'))
    return hashlib.sha1(encoded.encode('utf-8')).hexdigest()


# =============================================================================
# Response Parsing
# =============================================================================

def _first_present(parsed: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = parsed.get(key)
        if value is not None:
            return value
    return None


def _as_string_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, str):
        return [value]
    return None


def _action_to_text(action: Any) -> str:
    """Flatten an action that came back as an object instead of a string."""
    if isinstance(action, str):
        return action
    if isinstance(action, dict):
        label = _first_present(action, 'action', 'accion', 'acción', 'title', 'titulo')
        details = _first_present(action, 'details', 'detalles')
        priority = _first_present(action, 'priority', 'prioridad')
        parts = [label, f"(Prioridad {priority})" if priority else None, details]
        return " ".join(str(part) for part in parts if part)
    return "" if action is None else str(action)


def parse_digest_content(parsed: Dict[str, Any]) -> Tuple[Optional[str], Optional[List[str]], Optional[List[str]], str]:
    """
    Extract (headline, summary, actions, content) from a digest answer.

    content is the model's own free text when present, otherwise the headline,
    summary and actions joined by newlines.
    """
    summary = _as_string_list(_first_present(parsed, 'summary', 'resumen', 'body'))
    headline = _first_present(parsed, 'headline', 'titular', 'title')

    actions_field = _first_present(parsed, 'actions', 'acciones', 'action_items')
    if isinstance(actions_field, list):
        actions: Optional[List[str]] = [_action_to_text(action) for action in actions_field]
    elif isinstance(parsed.get('actionItems'), list):
        actions = [str(item) for item in parsed['actionItems']]
    else:
        actions = None

    content_field = parsed.get('content') or parsed.get('output') or parsed.get('text')
    joined = "\n".join(
        str(part) for part in [headline, *(summary or []), *(actions or [])] if part
    )
    content = content_field or joined or ""

    return (str(headline) if headline is not None else None), summary, actions, str(content)


def _load_json_object(content: Optional[str]) -> Dict[str, Any]:
    if not content:
        raise ValueError("Respuesta sin contenido")
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"No se pudo parsear la respuesta JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("La respuesta JSON no es un objeto")
    return parsed


# =============================================================================
# Gateway
# =============================================================================

class AIGateway:
    """
    Chat-completions client plus the three dashboard generators.

    Args:
        settings: Provides API key, model, base URL, limits and cache TTL.
        client: Optional shared httpx.AsyncClient. When omitted a client is
            opened per request.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._client = client
        self._digest_cache: Dict[str, Tuple[float, DigestResponse]] = {}

    @property
    def default_model(self) -> str:
        return self._settings.openai_api_model

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _post(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, headers=headers, json=body)
        async with httpx.AsyncClient(timeout=self._settings.openai_timeout_seconds) as client:
            return await client.post(url, headers=headers, json=body)

    async def call_chat_completion(
        self,
        system: str,
        user: str,
        temperature: float = 0.4,
        max_tokens: Optional[int] = None,
        job: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        POST a two-message conversation to {OPENAI_API_BASE}/chat/completions.

        Returns:
            Dict with 'content' (str or None), 'model', 'usage' and 'elapsed_ms'.

        Raises:
            MissingAIKeyError: If no API key is configured.
            AIRequestError: On transport errors or non-2xx responses.
        """
        api_key = self._settings.openai_api_key
        if not api_key:
            raise MissingAIKeyError()

        url = f"{self._settings.openai_api_base.rstrip('/')}/chat/completions"
        body = {
            'model': self.default_model,
            'temperature': temperature,
            'max_tokens': max_tokens or self._settings.openai_max_tokens,
            'response_format': {'type': 'json_object'},
            'messages': [
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': user},
            ],
        }
        headers = {'Authorization': f"Bearer {api_key}"}

        start = time.perf_counter()
        try:
            response = await self._post(url, headers, body)
        except httpx.HTTPError as e:
            raise AIRequestError(f"OpenAI request failed: {e}") from e
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(
                f"AI call failed for job={job}: status={response.status_code} body={response.text[:500]}"
            )
            raise AIRequestError(
                f"OpenAI request failed: {response.status_code}", response.status_code
            )

        data = response.json()
        choices = data.get('choices') or [{}]
        content = (choices[0].get('message') or {}).get('content')

        return {
            'content': content,
            'model': data.get('model') or self.default_model,
            'usage': data.get('usage') or {},
            'elapsed_ms': elapsed_ms,
        }

    # -------------------------------------------------------------------------
    # Invocation Log
    # -------------------------------------------------------------------------

    def _log_invocation(
        self,
        job: str,
        status: AIInvocationStatus,
        provider: str,
        used_fallback: bool,
        payload_hash: str,
        elapsed_ms: Optional[int] = None,
        usage: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        usage = usage or {}
        message = (
            f"AI invocation job={job} status={status.value} provider={provider} "
            f"used_fallback={used_fallback} payload={payload_hash} elapsed_ms={elapsed_ms} "
            f"tokens={usage.get('prompt_tokens')}/{usage.get('completion_tokens')}/{usage.get('total_tokens')}"
        )
        if error:
            message += f" error={error}"

        if status == AIInvocationStatus.ERROR:
            logger.warning(message)
        else:
            logger.info(message)

    # -------------------------------------------------------------------------
    # Digest
    # -------------------------------------------------------------------------

    def _cache_get(self, cache_key: str) -> Optional[DigestResponse]:
        entry = self._digest_cache.get(cache_key)
        if entry is None:
            return None
        expires_at, response = entry
        if expires_at > time.monotonic():
            return response
        del self._digest_cache[cache_key]
        return None

    def _cache_put(self, cache_key: str, response: DigestResponse) -> None:
        ttl = self._settings.ai_digest_cache_ttl_seconds
        if ttl <= 0:
            return
        now = time.monotonic()
        expired = [key for key, (expires_at, _) in self._digest_cache.items() if expires_at <= now]
        for key in expired:
            del self._digest_cache[key]
        self._digest_cache[cache_key] = (now + ttl, response)

    def clear_cache(self) -> None:
        self._digest_cache.clear()

    async def generate_digest(self, payload: DigestRequest) -> DigestResponse:
        """Pipeline digest for the requested timeframe (cached per payload)."""
        payload_hash = fingerprint_digest_payload(payload)
        cache_key = f"{payload.timeframe.value}:{payload_hash}"

        if self._settings.ai_digest_cache_ttl_seconds > 0:
            cached = self._cache_get(cache_key)
            if cached is not None:
                self._log_invocation(
                    'digest', AIInvocationStatus.CACHE_HIT, cached.provider,
                    cached.usedFallback, payload_hash,
                )
                return cached

        try:
            result = await self.call_chat_completion(
                DIGEST_SYSTEM_PROMPT,
                build_digest_prompt(payload),
                temperature=DIGEST_TEMPERATURE,
                job='digest',
            )
            headline, summary, actions, content = parse_digest_content(
                _load_json_object(result['content'])
            )
        except MissingAIKeyError as e:
            self._log_invocation(
                'digest', AIInvocationStatus.FALLBACK, PROVIDER_FALLBACK, True,
                payload_hash, error=str(e),
            )
            return DigestResponse(
                content=payload.fallbackText,
                provider=PROVIDER_FALLBACK,
                usedFallback=True,
            )
        except (AIRequestError, ValueError) as e:
            logger.error(f"AI digest generation failed: {e}", exc_info=True)
            self._log_invocation(
                'digest', AIInvocationStatus.ERROR, PROVIDER_FALLBACK_ERROR, True,
                payload_hash, error=str(e),
            )
            return DigestResponse(
                content=payload.fallbackText,
                provider=PROVIDER_FALLBACK_ERROR,
                usedFallback=True,
                error=str(e),
            )

        if not content.strip():
            logger.warning("AI digest answer had no usable content, using fallback text")
            self._log_invocation(
                'digest', AIInvocationStatus.FALLBACK, result['model'], True, payload_hash,
            )
            return DigestResponse(
                content=payload.fallbackText,
                provider=result['model'],
                usedFallback=True,
            )

        response = DigestResponse(
            headline=headline,
            summary=summary,
            actions=actions,
            content=content,
            provider=result['model'],
            usedFallback=False,
        )
        self._cache_put(cache_key, response)
        self._log_invocation(
            'digest', AIInvocationStatus.SUCCESS, response.provider, False, payload_hash,
            elapsed_ms=result['elapsed_ms'], usage=result['usage'],
        )
        return response

    # -------------------------------------------------------------------------
    # Next Step
    # -------------------------------------------------------------------------

    async def generate_next_step(self, payload: NextStepRequest) -> NextStepResponse:
        """Suggest the next concrete action for a deal."""
        try:
            result = await self.call_chat_completion(
                NEXT_STEP_SYSTEM_PROMPT,
                build_next_step_prompt(payload),
                temperature=NEXT_STEP_TEMPERATURE,
                job='next-step',
            )
            parsed = _load_json_object(result['content'])
            next_step = _first_present(parsed, 'next_step', 'nextStep')
            if not isinstance(next_step, str) or not next_step.strip():
                raise ValueError("JSON sin next_step")
            rationale = _as_string_list(_first_present(parsed, 'rationale', 'reasons'))
        except (MissingAIKeyError, AIRequestError, ValueError) as e:
            status = (
                AIInvocationStatus.FALLBACK if isinstance(e, MissingAIKeyError)
                else AIInvocationStatus.ERROR
            )
            self._log_invocation(
                'next-step', status, PROVIDER_FALLBACK, True, payload.deal.id, error=str(e),
            )
            return NextStepResponse(
                nextStep=payload.fallbackText,
                provider=PROVIDER_FALLBACK,
                usedFallback=True,
                error=str(e),
            )

        response = NextStepResponse(
            nextStep=next_step.strip(),
            rationale=rationale,
            provider=result['model'],
            usedFallback=False,
        )
        self._log_invocation(
            'next-step', AIInvocationStatus.SUCCESS, response.provider, False, payload.deal.id,
            elapsed_ms=result['elapsed_ms'], usage=result['usage'],
        )
        return response

    # -------------------------------------------------------------------------
    # Contact Summary
    # -------------------------------------------------------------------------

    async def generate_contact_summary(self, payload: ContactSummaryRequest) -> ContactSummaryResponse:
        """Headline and highlights describing where a contact stands."""
        try:
            result = await self.call_chat_completion(
                CONTACT_SUMMARY_SYSTEM_PROMPT,
                build_contact_summary_prompt(payload),
                temperature=CONTACT_SUMMARY_TEMPERATURE,
                job='contact-summary',
            )
            parsed = _load_json_object(result['content'])
            headline = _first_present(parsed, 'headline', 'titular')
            highlights = _as_string_list(_first_present(parsed, 'highlights', 'puntos'))
            if not headline and not highlights:
                raise ValueError("JSON sin contenido útil")
        except (MissingAIKeyError, AIRequestError, ValueError) as e:
            status = (
                AIInvocationStatus.FALLBACK if isinstance(e, MissingAIKeyError)
                else AIInvocationStatus.ERROR
            )
            self._log_invocation(
                'contact-summary', status, PROVIDER_FALLBACK, True, payload.contact.id, error=str(e),
            )
            return ContactSummaryResponse(
                highlights=[payload.fallbackText],
                provider=PROVIDER_FALLBACK,
                usedFallback=True,
                error=str(e),
            )

        response = ContactSummaryResponse(
            headline=str(headline) if headline else None,
            highlights=highlights,
            provider=result['model'],
            usedFallback=False,
        )
        self._log_invocation(
            'contact-summary', AIInvocationStatus.SUCCESS, response.provider, False,
            payload.contact.id, elapsed_ms=result['elapsed_ms'], usage=result['usage'],
        )
        return response


__all__ = [
    'PROVIDER_FALLBACK',
    'PROVIDER_FALLBACK_ERROR',
    'MissingAIKeyError',
    'AIRequestError',
    'build_digest_prompt',
    'build_next_step_prompt',
    'build_contact_summary_prompt',
    'fingerprint_digest_payload',
    'parse_digest_content',
    'AIGateway',
]
