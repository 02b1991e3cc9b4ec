"""
Cliente do gateway de pagamento (Mercado Pago, Orders API)

Três trilhos de cobrança: Pix (transferência instantânea), cartão online
(token de uso único) e maquininha Point (cartão presencial). Toda criação
envia um X-Idempotency-Key derivado do tuplo da cobrança + número da tentativa.
Nada aqui grava no banco: a persistência fica em services.reconciliation.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from agenda.core.config import Settings, get_settings
from agenda.core.errors import AppError, ErrorCode, Result, fail, ok
from agenda.services.totals import round_currency

logger = logging.getLogger(__name__)


ORDERS_PATH = "/v1/orders"
DEVICES_PATH = "/point/integration-api/devices"

MINIMUM_TRANSACTION_AMOUNT = 1.0
DEFAULT_PIX_TTL = timedelta(hours=24)

ORDERS_CREDENTIALS_MESSAGE = (
    "Checkout Transparente (Orders API) não aceita credenciais TEST-. "
    "Configure MERCADOPAGO_ACCESS_TOKEN com credenciais de PRODUÇÃO."
)

PAID_PROVIDER_STATUSES = frozenset({"approved", "processed", "accredited", "partially_refunded"})
FAILED_PROVIDER_STATUSES = frozenset({"rejected", "cancelled", "canceled", "charged_back", "failed", "refunded"})

GENERIC_RETRY_MESSAGE = "Pagamento indisponível no momento. Tente novamente em instantes."

RAIL_MESSAGES = {
    "pix": {
        "network": "Falha de rede ao criar pagamento Pix. Tente novamente.",
        "fallback": "Erro ao criar pagamento Pix.",
        "invalid": "Resposta inválida do Mercado Pago ao criar Pix.",
        "failed": "Não foi possível gerar o Pix agora. Tente novamente.",
    },
    "card": {
        "network": "Falha de rede ao processar cartão. Tente novamente.",
        "fallback": "Erro ao processar pagamento com cartão.",
        "invalid": "Resposta inválida do Mercado Pago ao processar cartão.",
        "failed": "Cartão não aprovado. Tente outro cartão ou Pix.",
    },
    "point": {
        "network": "Falha de rede ao enviar cobrança para maquininha.",
        "fallback": "Erro ao cobrar na maquininha.",
        "invalid": "Resposta inválida do Mercado Pago para cobrança Point.",
        "failed": "Cobrança na maquininha não concluída. Verifique o terminal e tente novamente.",
    },
    "status": {
        "network": "Falha de rede ao consultar cobrança.",
        "fallback": "Erro ao consultar status da cobrança.",
        "invalid": "Resposta inválida ao consultar cobrança.",
    },
    "devices": {
        "network": "Falha de rede ao listar maquininhas.",
        "fallback": "Não foi possível listar maquininhas Point.",
        "invalid": "Resposta inválida ao listar maquininhas.",
    },
}


# =========================
# HELPERS PUROS
# =========================

def normalize_access_token(value: Optional[str]) -> str:
    if not value:
        return ""
    trimmed = value.strip().strip("\"'")
    return re.sub(r"^Bearer\s+", "", trimmed, flags=re.IGNORECASE)


def uses_unsupported_test_credential(token: str) -> bool:
    return token.upper().startswith("TEST-")


def map_provider_status(provider_status: Optional[str]) -> str:
    """Status do gateway -> paid | failed | pending."""
    normalized = (provider_status or "").lower()
    if normalized in PAID_PROVIDER_STATUSES:
        return "paid"
    if normalized in FAILED_PROVIDER_STATUSES:
        return "failed"
    return "pending"


def format_amount(amount: float) -> str:
    return f"{round_currency(amount):.2f}"


def build_idempotency_key(*parts) -> str:
    """sha256 do tuplo da cobrança; mesma entrada, mesma chave."""
    raw = "|".join("" if part is None else str(part) for part in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:64]


def normalize_attempt(attempt) -> int:
    try:
        value = int(attempt)
    except (TypeError, ValueError):
        return 0
    return max(0, value)


def parse_api_payload(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return {"message": text}
    return payload if isinstance(payload, dict) else {"data": payload}


def parse_amount(value, fallback: float) -> float:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return fallback
    return fallback


def parse_iso_datetime(value) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _text(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _join_entries(entries, keys) -> Optional[str]:
    if not isinstance(entries, list):
        return None
    parts = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for key in keys:
            text = _text(entry.get(key))
            if text:
                parts.append(text)
                break
    return " | ".join(parts) if parts else None


def payload_message(payload: Optional[Dict[str, Any]], fallback: str) -> str:
    if not payload:
        return fallback
    return (
        _text(payload.get("message"))
        or _text(payload.get("error"))
        or _join_entries(payload.get("errors"), ("message", "code"))
        or _join_entries(payload.get("cause"), ("description", "code"))
        or fallback
    )


def _collect_error_details(payload: Optional[Dict[str, Any]]) -> str:
    if not payload:
        return ""
    details: List[str] = []
    for key in ("errors", "cause"):
        entries = payload.get(key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            for name in ("code", "message"):
                if isinstance(entry.get(name), str):
                    details.append(entry[name])
            for item in entry.get("details") or []:
                if isinstance(item, str):
                    details.append(item)
    return " | ".join(details).lower()


def map_user_message(rail: str, status_code: int, payload: Optional[Dict[str, Any]], fallback: str) -> str:
    """Recusa do gateway -> mensagem segura para o usuário."""
    details = _collect_error_details(payload)

    if status_code == 401 or "invalid_credentials" in details:
        return "Pagamento indisponível no momento. Tente novamente em alguns minutos."
    if "high_risk" in details:
        return "Cartão recusado por segurança. Tente outro cartão ou Pix."
    if "invalid_users_involved" in details:
        return "Não foi possível validar os dados do pagador. Confira nome, CPF e email."
    if "invalid_transaction_amount" in details:
        return "Valor de pagamento inválido para processamento."
    if "unsupported_properties" in details:
        return GENERIC_RETRY_MESSAGE
    if "failed" in details and rail in RAIL_MESSAGES and "failed" in RAIL_MESSAGES[rail]:
        return RAIL_MESSAGES[rail]["failed"]
    return fallback


# =========================
# PAGADOR
# =========================

@dataclass
class Payer:
    name: str
    phone: str = ""
    email: Optional[str] = None
    identification_type: Optional[str] = None
    identification_number: Optional[str] = None

    def to_payload(self, fallback_last_name: str = "Cliente") -> Dict[str, Any]:
        parts = self.name.split()
        first_name = parts[0] if parts else "Cliente"
        last_name = " ".join(parts[1:]) if len(parts) > 1 else fallback_last_name

        digits = re.sub(r"\D", "", self.phone or "")
        payer: Dict[str, Any] = {
            "email": (self.email or "").strip() or f"cliente+{digits or 'anon'}@agenda.local",
            "first_name": first_name,
            "last_name": last_name,
            "phone": {"area_code": digits[:2] or "11", "number": digits[2:] or digits},
        }
        if self.identification_type and self.identification_number:
            payer["identification"] = {
                "type": self.identification_type,
                "number": self.identification_number,
            }
        return payer


# =========================
# NORMALIZAÇÃO DA RESPOSTA
# =========================

@dataclass(frozen=True)
class OrderSnapshot:
    order_id: Optional[str]
    payment_id: Optional[str]
    external_reference: Optional[str]
    provider_status: str
    status_detail: Optional[str]
    amount: float
    point_terminal_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_type: Optional[str] = None
    installments: Optional[int] = None
    ticket_url: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    @property
    def internal_status(self) -> str:
        return map_provider_status(self.provider_status)

    @property
    def card_mode(self) -> Optional[str]:
        payment_type = (self.payment_type or "").lower()
        if "debit" in payment_type:
            return "debit"
        if "credit" in payment_type:
            return "credit"
        return None


def extract_order(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """A order pode vir no topo ou dentro de um envelope `data`."""
    if not payload:
        return None
    transactions = payload.get("transactions") or {}
    if payload.get("id") or (isinstance(transactions, dict) and transactions.get("payments")):
        return payload
    if isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def normalize_order(payload: Optional[Dict[str, Any]]) -> OrderSnapshot:
    order = extract_order(payload) or {}
    envelope = payload.get("data") if isinstance(payload, dict) and isinstance(payload.get("data"), dict) else {}

    def nested(source, *keys):
        current = source
        for key in keys:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current

    payments = nested(order, "transactions", "payments") or nested(envelope, "transactions", "payments") or []
    first_payment = payments[0] if payments and isinstance(payments[0], dict) else {}
    method = first_payment.get("payment_method") or {}

    order_id = str(order["id"]) if order.get("id") else None
    payment_id = str(first_payment["id"]) if first_payment.get("id") else order_id

    external_reference = _first(_text(order.get("external_reference")), _text(envelope.get("external_reference")))
    installments = method.get("installments")

    return OrderSnapshot(
        order_id=order_id,
        payment_id=payment_id,
        external_reference=external_reference,
        provider_status=_first(first_payment.get("status"), order.get("status"), envelope.get("status"), "pending"),
        status_detail=_first(
            first_payment.get("status_detail"), order.get("status_detail"), envelope.get("status_detail")
        ),
        amount=parse_amount(_first(first_payment.get("amount"), first_payment.get("paid_amount")), 0.0),
        point_terminal_id=_first(
            _text(nested(order, "config", "point", "terminal_id")),
            _text(nested(envelope, "config", "point", "terminal_id")),
        ),
        payment_method_id=method.get("id"),
        payment_type=method.get("type"),
        installments=installments if isinstance(installments, int) and not isinstance(installments, bool) else None,
        ticket_url=method.get("ticket_url"),
        qr_code=method.get("qr_code"),
        qr_code_base64=method.get("qr_code_base64"),
        created_at=_first(
            parse_iso_datetime(first_payment.get("created_date")),
            parse_iso_datetime(first_payment.get("date_created")),
            parse_iso_datetime(order.get("created_date")),
            parse_iso_datetime(order.get("date_created")),
        ),
        expires_at=_first(
            parse_iso_datetime(method.get("date_of_expiration")),
            parse_iso_datetime(method.get("expiration_date")),
            parse_iso_datetime(method.get("expiration_time")),
            parse_iso_datetime(first_payment.get("date_of_expiration")),
            parse_iso_datetime(first_payment.get("expiration_date")),
            parse_iso_datetime(order.get("date_of_expiration")),
            parse_iso_datetime(order.get("expiration_date")),
        ),
        raw=payload,
    )


@dataclass(frozen=True)
class PointDevice:
    id: str
    name: str
    model: Optional[str] = None
    external_id: Optional[str] = None
    status: Optional[str] = None


def _device_entries(payload) -> list:
    if not payload:
        return []
    for candidate in (
        payload.get("results"),
        payload.get("devices"),
        (payload.get("data") or {}).get("results") if isinstance(payload.get("data"), dict) else None,
        (payload.get("data") or {}).get("devices") if isinstance(payload.get("data"), dict) else None,
        payload.get("data"),
    ):
        if isinstance(candidate, list):
            return candidate
    return []


# =========================
# CLIENTE HTTP
# =========================

class MercadoPagoClient:
    """Cliente síncrono da Orders API; toda chamada devolve Result em vez de lançar."""

    def __init__(
        self,
        access_token: Optional[str],
        *,
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._access_token = normalize_access_token(access_token)
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "MercadoPagoClient":
        settings = settings or get_settings()
        return cls(
            settings.mercadopago_access_token,
            base_url=settings.mercadopago_base_url,
            timeout=settings.gateway_timeout_seconds,
            **kwargs,
        )

    def close(self) -> None:
        self._client.close()

    def _resolve_token(self) -> Result[str]:
        if not self._access_token:
            return fail(AppError(
                "MERCADOPAGO_ACCESS_TOKEN ausente: configure a chave no ambiente.",
                ErrorCode.CONFIG_ERROR,
            ))
        if uses_unsupported_test_credential(self._access_token):
            return fail(AppError(ORDERS_CREDENTIALS_MESSAGE, ErrorCode.CONFIG_ERROR))
        return ok(self._access_token)

    def _request(
        self,
        method: str,
        path: str,
        rail: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Result[Optional[Dict[str, Any]]]:
        token_result = self._resolve_token()
        if not token_result.ok:
            return token_result

        messages = RAIL_MESSAGES[rail]
        headers = {"Authorization": f"Bearer {token_result.data}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key

        try:
            response = self._client.request(method, path, json=body, params=params, headers=headers)
        except httpx.RequestError as exc:
            # timeout também cai aqui: a cobrança pode ter passado, só o polling confirma
            logger.exception("Mercado Pago unreachable (%s %s)", method, path)
            return fail(AppError(messages["network"], ErrorCode.GATEWAY_ERROR, details=str(exc)))

        payload = parse_api_payload(response.text)
        if response.is_error:
            fallback = payload_message(payload, messages["fallback"])
            if rail in ("pix", "card", "point"):
                message = map_user_message(rail, response.status_code, payload, fallback)
            else:
                message = fallback
            logger.warning("Mercado Pago rejected %s %s: status=%s", method, path, response.status_code)
            return fail(AppError(
                message,
                ErrorCode.PROVIDER_REJECTED,
                details={"provider_status_code": response.status_code, "payload": payload},
            ))

        return ok(payload)

    def _create_order(self, rail: str, body: Dict[str, Any], idempotency_key: str) -> Result[OrderSnapshot]:
        logger.info("Creating %s order for appointment %s", rail, body.get("external_reference"))
        result = self._request("POST", ORDERS_PATH, rail, body=body, idempotency_key=idempotency_key)
        if not result.ok:
            return result
        snapshot = normalize_order(result.data)
        if not snapshot.order_id or not snapshot.payment_id:
            return fail(AppError(RAIL_MESSAGES[rail]["invalid"], ErrorCode.GATEWAY_ERROR, details=result.data))
        return ok(snapshot)

    # -------------------------
    # PIX
    # -------------------------
    def create_pix_order(
        self,
        appointment_id,
        amount: float,
        payer: Payer,
        attempt: int = 0,
    ) -> Result[OrderSnapshot]:
        total = format_amount(amount)
        key = build_idempotency_key("online-pix", appointment_id, total, normalize_attempt(attempt))
        body = {
            "type": "online",
            "processing_mode": "automatic",
            "total_amount": total,
            "external_reference": str(appointment_id),
            "payer": payer.to_payload(),
            "transactions": {
                "payments": [
                    {"amount": total, "payment_method": {"id": "pix", "type": "bank_transfer"}},
                ]
            },
        }
        created = self._create_order("pix", body, key)
        if not created.ok or created.data.expires_at is not None:
            return created
        # sem validade no payload: Pix vale 24h a partir da criação
        order = created.data
        base = order.created_at or datetime.now(timezone.utc)
        return ok(replace(order, expires_at=base + DEFAULT_PIX_TTL))

    # -------------------------
    # CARTÃO ONLINE
    # -------------------------
    def create_card_order(
        self,
        appointment_id,
        amount: float,
        *,
        token: str,
        payment_method_id: str,
        payer: Payer,
        installments: int = 1,
        issuer_id: Optional[str] = None,
        attempt: int = 0,
    ) -> Result[OrderSnapshot]:
        total = format_amount(amount)
        key = build_idempotency_key(
            "online-card", appointment_id, payment_method_id, total, token, normalize_attempt(attempt)
        )
        payment_method: Dict[str, Any] = {
            "id": payment_method_id,
            "type": "credit_card",
            "token": token,
            "installments": max(1, int(installments or 1)),
        }
        if issuer_id:
            payment_method["issuer_id"] = issuer_id
        body = {
            "type": "online",
            "processing_mode": "automatic",
            "total_amount": total,
            "external_reference": str(appointment_id),
            "payer": payer.to_payload(),
            "transactions": {"payments": [{"amount": total, "payment_method": payment_method}]},
        }
        return self._create_order("card", body, key)

    # -------------------------
    # MAQUININHA (POINT)
    # -------------------------
    def create_point_order(
        self,
        appointment_id,
        amount: float,
        *,
        terminal_id: str,
        card_mode: str,
        attempt: int = 0,
    ) -> Result[OrderSnapshot]:
        terminal = (terminal_id or "").strip()
        if not terminal:
            return fail(AppError("Terminal Point não configurado.", ErrorCode.VALIDATION_ERROR))
        if card_mode not in ("debit", "credit"):
            return fail(AppError("Modo do cartão inválido, use debit ou credit.", ErrorCode.VALIDATION_ERROR))

        total = format_amount(amount)
        key = build_idempotency_key(
            "point-card", appointment_id, terminal, card_mode, total, normalize_attempt(attempt)
        )
        body = {
            "type": "point",
            "processing_mode": "automatic",
            "total_amount": total,
            "external_reference": str(appointment_id),
            "config": {"point": {"terminal_id": terminal}},
            "transactions": {
                "payments": [
                    {
                        "amount": total,
                        "payment_method": {"type": "debit_card" if card_mode == "debit" else "credit_card"},
                    }
                ]
            },
        }
        return self._create_order("point", body, key)

    # -------------------------
    # CONSULTAS
    # -------------------------
    def get_order(self, order_id: str) -> Result[OrderSnapshot]:
        result = self._request("GET", f"{ORDERS_PATH}/{order_id}", "status")
        if not result.ok:
            return result
        snapshot = normalize_order(result.data)
        if not snapshot.order_id or not snapshot.payment_id:
            return fail(AppError(RAIL_MESSAGES["status"]["invalid"], ErrorCode.GATEWAY_ERROR, details=result.data))
        return ok(snapshot)

    def list_point_devices(self, offset: int = 0, limit: int = 50) -> Result[List[PointDevice]]:
        result = self._request("GET", DEVICES_PATH, "devices", params={"offset": offset, "limit": limit})
        if not result.ok:
            return result

        devices = []
        for entry in _device_entries(result.data):
            if not isinstance(entry, dict):
                continue
            device_id = _text(entry.get("id")) or _text(entry.get("terminal_id"))
            if not device_id:
                continue
            devices.append(PointDevice(
                id=device_id,
                name=_text(entry.get("name")) or _text(entry.get("device_name")) or "Point",
                model=_text(entry.get("model")) or _text(entry.get("device_model")),
                external_id=_text(entry.get("external_id")),
                status=_text(entry.get("status")) or _text(entry.get("operating_mode")),
            ))
        return ok(devices)
