"""
AI Gateway Test Module

Tests for pulse_backend/services/ai_gateway.py. The chat-completions endpoint
is replaced by a Mock httpx client; no network calls are made.

Test Coverage:
- Prompt builders (digest, next step, contact summary)
- Digest payload fingerprint
- Tolerant parsing of digest answers (Spanish/English keys, action objects)
- Fallback behaviour: missing key, non-2xx, transport errors, bad JSON,
  empty answers
- Digest cache hits, pruning of expired entries, TTL=0 and per-timeframe keys
"""

import json
import time
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from pulse_backend.core.config import Settings
from pulse_backend.services.ai_gateway import (
    PROVIDER_FALLBACK,
    PROVIDER_FALLBACK_ERROR,
    AIGateway,
    AIRequestError,
    MissingAIKeyError,
    build_contact_summary_prompt,
    build_digest_prompt,
    build_next_step_prompt,
    fingerprint_digest_payload,
    parse_digest_content,
)
from pulse_backend.models.schemas import (
    ContactSummaryRequest,
    DigestRequest,
    NextStepRequest,
)


MODEL_NAME = 'gpt-4o-mini-2024-07-18'


def _settings(**overrides: Any) -> Settings:
    values = {
        'openai_api_key': 'test-openai-key',
        'openai_api_model': 'gpt-4o-mini',
        'openai_api_base': 'https://api.openai.test/v1/',
        'openai_max_tokens': 700,
        'ai_digest_cache_ttl_seconds': 300,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _client(content: Optional[Any], status_code: int = 200) -> Mock:
    """Mock httpx.AsyncClient whose post() answers with one chat choice."""
    if content is not None and not isinstance(content, str):
        content = json.dumps(content)
    response = Mock(
        status_code=status_code,
        text='upstream error' if status_code >= 300 else '',
        json=Mock(return_value={
            'model': MODEL_NAME,
            'choices': [{'message': {'role': 'assistant', 'content': content}}],
            'usage': {'prompt_tokens': 120, 'completion_tokens': 80, 'total_tokens': 200},
        }),
    )
    client = Mock()
    client.post = AsyncMock(return_value=response)
    return client


def _digest_request(**overrides: Any) -> DigestRequest:
    values: Dict[str, Any] = {
        'timeframe': 'week',
        'stats': {'hotDeals': 2, 'riskDeals': 1, 'overdueTasks': 3},
        'topDeals': [
            {
                'id': 'deal-1',
                'title': 'CRM Enterprise',
                'company': 'DataFlow',
                'amount': 85000,
                'stage': 'Cierre',
                'priority': 'Hot',
                'risk': 'Bajo',
                'nextStep': 'Firmar contrato',
            },
        ],
        'alerts': [],
        'fallbackText': 'Resumen IA · 15/1/2024',
    }
    values.update(overrides)
    return DigestRequest(**values)


def _next_step_request(**overrides: Any) -> NextStepRequest:
    values: Dict[str, Any] = {
        'deal': {
            'id': 'deal-2',
            'title': 'ERP InnovaCorp',
            'company': 'InnovaCorp',
            'stage': 'Propuesta',
            'probability': 70,
            'priority': 'Warm',
            'risk': 'Medio',
            'amount': 45000,
        },
        'context': {'reasons': ['Sin próximo paso definido'], 'inactivityDays': 5},
        'fallbackText': 'Agenda una llamada de seguimiento esta semana.',
    }
    values.update(overrides)
    return NextStepRequest(**values)


def _contact_request(**overrides: Any) -> ContactSummaryRequest:
    values: Dict[str, Any] = {
        'contact': {
            'id': 'contact-1',
            'name': 'Juan Pérez',
            'company': 'DataFlow Systems',
            'deals': [
                {'id': 'deal-1', 'title': 'CRM Enterprise', 'stage': 'Cierre',
                 'status': 'Open', 'amount': 85000},
            ],
        },
        'fallbackText': 'Sin resumen disponible.',
    }
    values.update(overrides)
    return ContactSummaryRequest(**values)


GOOD_DIGEST = {
    'headline': 'Semana clave para cerrar',
    'summary': ['Dos deals Hot listos.', 'Una alerta crítica.'],
    'actions': ['Llama a DataFlow', 'Renegocia la fecha del ERP', 'Cierra tareas vencidas'],
}


# =============================================================================
# Prompt Builders
# =============================================================================

class TestPrompts:
    """Tests for the prompt builders and the payload fingerprint."""

    def test_digest_prompt_contains_stats_and_deals(self):
        prompt = build_digest_prompt(_digest_request())

        assert 'Genera un digest accionable para esta semana.' in prompt
        assert '• Deals Hot abiertos: 2' in prompt
        assert '• Tareas vencidas o críticas: 3' in prompt
        assert (
            '1. CRM Enterprise (DataFlow) · Cierre · Hot · Bajo · €85.000 '
            '· Próximo paso: Firmar contrato'
        ) in prompt
        assert 'Sin alertas activas.' in prompt

    def test_digest_prompt_limits_deals(self):
        deals = [
            {'id': f'd{i}', 'title': f'Deal {i}', 'stage': 'Propuesta', 'priority': 'Warm', 'risk': 'Bajo'}
            for i in range(1, 8)
        ]

        prompt = build_digest_prompt(_digest_request(topDeals=deals))

        assert '5. Deal 5 (Sin empresa)' in prompt
        assert 'Deal 6' not in prompt

    def test_next_step_prompt(self):
        prompt = build_next_step_prompt(_next_step_request())

        assert '• Probabilidad declarada: 70' in prompt
        assert '• Monto estimado: €45.000' in prompt
        assert '1. Sin próximo paso definido' in prompt
        assert '• Días sin actividad: 5' in prompt
        assert 'Último próximo paso registrado' not in prompt

    def test_contact_prompt_without_deals(self):
        request = _contact_request(contact={'id': 'c-1', 'name': 'Ana Martínez'})

        prompt = build_contact_summary_prompt(request)

        assert 'Contacto: Ana Martínez' in prompt
        assert 'No tiene deals vinculados actualmente.' in prompt

    def test_contact_prompt_lists_deals(self):
        prompt = build_contact_summary_prompt(_contact_request())

        assert '1. CRM Enterprise (Cierre) · Open · €85.000' in prompt

    def test_fingerprint_ignores_fallback_text(self):
        first = fingerprint_digest_payload(_digest_request(fallbackText='A'))
        second = fingerprint_digest_payload(_digest_request(fallbackText='B'))
        changed = fingerprint_digest_payload(
            _digest_request(stats={'hotDeals': 3, 'riskDeals': 1, 'overdueTasks': 3})
        )

        assert first == second
        assert first != changed
        assert len(first) == 40


# =============================================================================
# Parsing
# =============================================================================

class TestParseDigestContent:
    """Tests for parse_digest_content()."""

    def test_canonical_keys(self):
        headline, summary, actions, content = parse_digest_content(GOOD_DIGEST)

        assert headline == 'Semana clave para cerrar'
        assert summary == GOOD_DIGEST['summary']
        assert actions == GOOD_DIGEST['actions']
        assert content.splitlines() == [
            'Semana clave para cerrar',
            'Dos deals Hot listos.',
            'Una alerta crítica.',
            'Llama a DataFlow',
            'Renegocia la fecha del ERP',
            'Cierra tareas vencidas',
        ]

    def test_spanish_keys_and_action_objects(self):
        parsed = {
            'titular': 'Foco en cierres',
            'resumen': 'Un solo párrafo.',
            'acciones': [
                {'accion': 'Llama a DataFlow', 'prioridad': 'Alta', 'detalles': 'antes del viernes'},
                'Revisa el ERP',
            ],
        }

        headline, summary, actions, _ = parse_digest_content(parsed)

        assert headline == 'Foco en cierres'
        assert summary == ['Un solo párrafo.']
        assert actions == ['Llama a DataFlow (Prioridad Alta) antes del viernes', 'Revisa el ERP']

    def test_action_items_camel_case(self):
        _, _, actions, _ = parse_digest_content({'headline': 'H', 'actionItems': ['Uno', 'Dos']})

        assert actions == ['Uno', 'Dos']

    def test_model_content_takes_precedence(self):
        _, _, _, content = parse_digest_content({'headline': 'H', 'content': 'Texto libre'})

        assert content == 'Texto libre'

    def test_empty_object(self):
        assert parse_digest_content({}) == (None, None, None, '')


# =============================================================================
# Transport
# =============================================================================

class TestCallChatCompletion:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(), client=client)

        result = await gateway.call_chat_completion('system', 'user', temperature=0.5, job='test')

        client.post.assert_awaited_once()
        call = client.post.call_args
        assert call.args[0] == 'https://api.openai.test/v1/chat/completions'
        assert call.kwargs['headers'] == {'Authorization': 'Bearer test-openai-key'}
        body = call.kwargs['json']
        assert body['model'] == 'gpt-4o-mini'
        assert body['temperature'] == 0.5
        assert body['max_tokens'] == 700
        assert body['response_format'] == {'type': 'json_object'}
        assert body['messages'] == [
            {'role': 'system', 'content': 'system'},
            {'role': 'user', 'content': 'user'},
        ]
        assert result['model'] == MODEL_NAME
        assert result['usage']['total_tokens'] == 200
        assert json.loads(result['content']) == GOOD_DIGEST

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(openai_api_key=None), client=client)

        with pytest.raises(MissingAIKeyError):
            await gateway.call_chat_completion('system', 'user')

        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status(self):
        gateway = AIGateway(_settings(), client=_client(None, status_code=429))

        with pytest.raises(AIRequestError) as exc_info:
            await gateway.call_chat_completion('system', 'user')

        assert exc_info.value.status == 429
        assert str(exc_info.value) == 'OpenAI request failed: 429'


# =============================================================================
# Digest
# =============================================================================

class TestGenerateDigest:
    """Tests for AIGateway.generate_digest()."""

    @pytest.mark.asyncio
    async def test_success(self):
        gateway = AIGateway(_settings(), client=_client(GOOD_DIGEST))

        digest = await gateway.generate_digest(_digest_request())

        assert digest.usedFallback is False
        assert digest.provider == MODEL_NAME
        assert digest.headline == 'Semana clave para cerrar'
        assert len(digest.actions) == 3
        assert digest.error is None

    @pytest.mark.asyncio
    async def test_missing_key_returns_fallback_text(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(openai_api_key=None), client=client)

        digest = await gateway.generate_digest(_digest_request())

        assert digest.provider == PROVIDER_FALLBACK
        assert digest.usedFallback is True
        assert digest.content == 'Resumen IA · 15/1/2024'
        assert digest.headline is None
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_error_returns_fallback_error(self):
        gateway = AIGateway(_settings(), client=_client(None, status_code=500))

        digest = await gateway.generate_digest(_digest_request())

        assert digest.provider == PROVIDER_FALLBACK_ERROR
        assert digest.usedFallback is True
        assert digest.content == 'Resumen IA · 15/1/2024'
        assert digest.error == 'OpenAI request failed: 500'

    @pytest.mark.asyncio
    async def test_transport_error_returns_fallback_error(self):
        client = Mock()
        client.post = AsyncMock(side_effect=httpx.ConnectError('connection refused'))
        gateway = AIGateway(_settings(), client=client)

        digest = await gateway.generate_digest(_digest_request())

        assert digest.provider == PROVIDER_FALLBACK_ERROR
        assert 'connection refused' in digest.error

    @pytest.mark.asyncio
    async def test_invalid_json_returns_fallback_error(self):
        gateway = AIGateway(_settings(), client=_client('no es json'))

        digest = await gateway.generate_digest(_digest_request())

        assert digest.provider == PROVIDER_FALLBACK_ERROR
        assert digest.error.startswith('No se pudo parsear la respuesta JSON')

    @pytest.mark.asyncio
    async def test_empty_answer_uses_fallback_text(self):
        gateway = AIGateway(_settings(), client=_client({}))

        digest = await gateway.generate_digest(_digest_request())

        assert digest.usedFallback is True
        assert digest.provider == MODEL_NAME
        assert digest.content == 'Resumen IA · 15/1/2024'
        assert digest.error is None

    @pytest.mark.asyncio
    async def test_null_content_is_an_error(self):
        gateway = AIGateway(_settings(), client=_client(None))

        digest = await gateway.generate_digest(_digest_request())

        assert digest.provider == PROVIDER_FALLBACK_ERROR
        assert digest.error == 'Respuesta sin contenido'

    @pytest.mark.asyncio
    async def test_identical_payload_is_served_from_cache(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(), client=client)

        first = await gateway.generate_digest(_digest_request())
        second = await gateway.generate_digest(_digest_request(fallbackText='otro texto'))

        assert first == second
        assert client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_timeframe_is_part_of_cache_key(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(), client=client)

        await gateway.generate_digest(_digest_request(timeframe='week'))
        await gateway.generate_digest(_digest_request(timeframe='month'))

        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(ai_digest_cache_ttl_seconds=0), client=client)

        await gateway.generate_digest(_digest_request())
        await gateway.generate_digest(_digest_request())

        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_fallbacks_are_not_cached(self):
        client = _client(None, status_code=503)
        gateway = AIGateway(_settings(), client=client)

        await gateway.generate_digest(_digest_request())
        await gateway.generate_digest(_digest_request())

        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(), client=client)

        await gateway.generate_digest(_digest_request())
        gateway.clear_cache()
        await gateway.generate_digest(_digest_request())

        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_expired_entries_are_pruned_on_write(self):
        client = _client(GOOD_DIGEST)
        gateway = AIGateway(_settings(), client=client)

        digest = await gateway.generate_digest(_digest_request(timeframe='week'))
        gateway._digest_cache['stale'] = (time.monotonic() - 1, digest)
        await gateway.generate_digest(_digest_request(timeframe='month'))

        assert 'stale' not in gateway._digest_cache
        assert len(gateway._digest_cache) == 2


# =============================================================================
# Next Step and Contact Summary
# =============================================================================

class TestGenerateNextStep:

    @pytest.mark.asyncio
    async def test_success_strips_text(self):
        client = _client({'next_step': '  Agenda una demo con el CFO  ', 'rationale': ['a', 'b']})
        gateway = AIGateway(_settings(), client=client)

        suggestion = await gateway.generate_next_step(_next_step_request())

        assert suggestion.nextStep == 'Agenda una demo con el CFO'
        assert suggestion.rationale == ['a', 'b']
        assert suggestion.usedFallback is False
        assert client.post.call_args.kwargs['json']['temperature'] == 0.5

    @pytest.mark.asyncio
    async def test_missing_key(self):
        gateway = AIGateway(_settings(openai_api_key=''), client=_client({}))

        suggestion = await gateway.generate_next_step(_next_step_request())

        assert suggestion.nextStep == 'Agenda una llamada de seguimiento esta semana.'
        assert suggestion.provider == PROVIDER_FALLBACK
        assert suggestion.error == 'OPENAI_API_KEY is not configured'

    @pytest.mark.asyncio
    async def test_answer_without_next_step(self):
        gateway = AIGateway(_settings(), client=_client({'rationale': ['x']}))

        suggestion = await gateway.generate_next_step(_next_step_request())

        assert suggestion.usedFallback is True
        assert suggestion.provider == PROVIDER_FALLBACK
        assert suggestion.error == 'JSON sin next_step'

    @pytest.mark.asyncio
    async def test_provider_error(self):
        gateway = AIGateway(_settings(), client=_client(None, status_code=500))

        suggestion = await gateway.generate_next_step(_next_step_request())

        assert suggestion.provider == PROVIDER_FALLBACK
        assert suggestion.error == 'OpenAI request failed: 500'


class TestGenerateContactSummary:

    @pytest.mark.asyncio
    async def test_success(self):
        client = _client({'headline': 'Listo para firmar', 'highlights': ['Deal en Cierre', '85k']})
        gateway = AIGateway(_settings(), client=client)

        summary = await gateway.generate_contact_summary(_contact_request())

        assert summary.headline == 'Listo para firmar'
        assert summary.highlights == ['Deal en Cierre', '85k']
        assert summary.provider == MODEL_NAME

    @pytest.mark.asyncio
    async def test_empty_answer_falls_back(self):
        gateway = AIGateway(_settings(), client=_client({'otro': 'valor'}))

        summary = await gateway.generate_contact_summary(_contact_request())

        assert summary.highlights == ['Sin resumen disponible.']
        assert summary.provider == PROVIDER_FALLBACK
        assert summary.error == 'JSON sin contenido útil'

    @pytest.mark.asyncio
    async def test_missing_key(self):
        gateway = AIGateway(_settings(openai_api_key=None))

        summary = await gateway.generate_contact_summary(_contact_request())

        assert summary.usedFallback is True
        assert summary.highlights == ['Sin resumen disponible.']
