"""
Клиенты платёжных систем: Alipay (RSA2), WeChat Pay (API v3), PayPal (REST).
"""

import base64
import json
import logging
import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import pytz
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import settings


logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """Ошибка обращения к платёжной системе."""


def _wrap_pem(value: str, label: str) -> bytes:
    """Оборачивает ключ в PEM, если он передан строкой base64 без заголовков."""
    value = value.strip().replace("\\n", "\n")
    if "-----BEGIN" in value:
        return value.encode("utf-8")
    body = "\n".join(value[i:i + 64] for i in range(0, len(value), 64))
    return f"-----BEGIN {label}-----\n{body}\n-----END {label}-----\n".encode("utf-8")


def load_private_key(value: str):
    """Загружает RSA-ключ в формате PKCS#8 или PKCS#1."""
    if not value:
        raise PaymentProviderError("Private key is not configured")
    try:
        return serialization.load_pem_private_key(_wrap_pem(value, "PRIVATE KEY"), password=None)
    except ValueError:
        return serialization.load_pem_private_key(_wrap_pem(value, "RSA PRIVATE KEY"), password=None)


def load_public_key(value: str):
    if not value:
        raise PaymentProviderError("Public key is not configured")
    return serialization.load_pem_public_key(_wrap_pem(value, "PUBLIC KEY"))


def rsa_sha256_sign(private_key, message: str) -> str:
    signature = private_key.sign(message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("utf-8")


def rsa_sha256_verify(public_key, message: str, signature: str) -> bool:
    try:
        public_key.verify(
            base64.b64decode(signature),
            message.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256()
        )
        return True
    except (InvalidSignature, ValueError):
        return False


class AlipayClient:
    """Alipay Open API, оплата на странице (alipay.trade.page.pay)."""

    METHOD_PAGE_PAY = "alipay.trade.page.pay"

    @staticmethod
    def build_sign_content(params: Dict[str, Any], exclude_sign_type: bool = False) -> str:
        """Строка для подписи: отсортированные пары key=value через &, без пустых значений."""
        excluded = {"sign", "sign_type"} if exclude_sign_type else {"sign"}
        pairs = [
            f"{key}={params[key]}"
            for key in sorted(params)
            if key not in excluded and params[key] not in (None, "")
        ]
        return "&".join(pairs)

    @staticmethod
    def sign(params: Dict[str, Any], private_key_value: Optional[str] = None) -> str:
        key = load_private_key(private_key_value or settings.ALIPAY_PRIVATE_KEY)
        return rsa_sha256_sign(key, AlipayClient.build_sign_content(params))

    @staticmethod
    def verify(params: Dict[str, Any], public_key_value: Optional[str] = None) -> bool:
        """Проверяет подпись уведомления Alipay."""
        signature = params.get("sign")
        if not signature:
            return False
        try:
            key = load_public_key(public_key_value or settings.ALIPAY_PUBLIC_KEY)
        except (PaymentProviderError, ValueError) as e:
            logger.error(f"[PAYMENT] Alipay public key error: {e}")
            return False
        content = AlipayClient.build_sign_content(params, exclude_sign_type=True)
        return rsa_sha256_verify(key, content, signature)

    @staticmethod
    def create_page_pay_url(order_number: str, amount: Decimal, subject: str) -> str:
        """Формирует подписанную ссылку на страницу оплаты."""
        if not settings.ALIPAY_APP_ID:
            raise PaymentProviderError("Alipay is not configured")
        timestamp = datetime.now(pytz.timezone("Asia/Shanghai")).strftime("%Y-%m-%d %H:%M:%S")
        params = {
            "app_id": settings.ALIPAY_APP_ID,
            "method": AlipayClient.METHOD_PAGE_PAY,
            "format": "JSON",
            "charset": "utf-8",
            "sign_type": "RSA2",
            "timestamp": timestamp,
            "version": "1.0",
            "notify_url": f"{settings.PUBLIC_BASE_URL}/api/payment/callback/alipay",
            "return_url": f"{settings.PUBLIC_BASE_URL}/api/payment/callback/alipay",
            "biz_content": json.dumps({
                "out_trade_no": order_number,
                "product_code": "FAST_INSTANT_TRADE_PAY",
                "total_amount": f"{amount:.2f}",
                "subject": subject,
            }, ensure_ascii=False, separators=(",", ":")),
        }
        params["sign"] = AlipayClient.sign(params)
        return f"{settings.ALIPAY_GATEWAY_URL}?{urlencode(params)}"


class WechatPayClient:
    """WeChat Pay API v3, оплата H5."""

    H5_PATH = "/v3/pay/transactions/h5"

    @staticmethod
    def build_authorization(method: str, path: str, body: str) -> str:
        """Заголовок Authorization для запросов к API v3."""
        timestamp = str(int(time.time()))
        nonce = secrets.token_hex(16)
        message = f"{method}\n{path}\n{timestamp}\n{nonce}\n{body}\n"
        signature = rsa_sha256_sign(load_private_key(settings.WECHAT_PRIVATE_KEY), message)
        return (
            f'WECHATPAY2-SHA256-RSA2048 mchid="{settings.WECHAT_MCH_ID}",'
            f'nonce_str="{nonce}",signature="{signature}",'
            f'timestamp="{timestamp}",serial_no="{settings.WECHAT_MCH_SERIAL_NO}"'
        )

    @staticmethod
    def verify_callback(
        timestamp: str,
        nonce: str,
        body: str,
        signature: str,
        public_key_value: Optional[str] = None
    ) -> bool:
        """Проверяет подпись уведомления (заголовки Wechatpay-*)."""
        if not (timestamp and nonce and signature):
            return False
        try:
            key = load_public_key(public_key_value or settings.WECHAT_PLATFORM_PUBLIC_KEY)
        except (PaymentProviderError, ValueError) as e:
            logger.error(f"[PAYMENT] WeChat platform key error: {e}")
            return False
        return rsa_sha256_verify(key, f"{timestamp}\n{nonce}\n{body}\n", signature)

    @staticmethod
    def decrypt_resource(resource: Dict[str, Any], api_v3_key: Optional[str] = None) -> Dict[str, Any]:
        """Расшифровывает поле resource уведомления (AEAD_AES_256_GCM)."""
        key = (api_v3_key or settings.WECHAT_API_V3_KEY).encode("utf-8")
        try:
            plaintext = AESGCM(key).decrypt(
                resource["nonce"].encode("utf-8"),
                base64.b64decode(resource["ciphertext"]),
                (resource.get("associated_data") or "").encode("utf-8")
            )
        except (InvalidTag, KeyError, ValueError) as e:
            raise PaymentProviderError(f"Cannot decrypt WeChat resource: {e}")
        return json.loads(plaintext.decode("utf-8"))

    @staticmethod
    async def create_h5_order(order_number: str, amount: Decimal, description: str, client_ip: str) -> str:
        """Создаёт H5-платёж и возвращает h5_url."""
        if not settings.WECHAT_APP_ID or not settings.WECHAT_MCH_ID:
            raise PaymentProviderError("WeChat Pay is not configured")
        body = json.dumps({
            "appid": settings.WECHAT_APP_ID,
            "mchid": settings.WECHAT_MCH_ID,
            "description": description,
            "out_trade_no": order_number,
            "notify_url": f"{settings.PUBLIC_BASE_URL}/api/payment/callback/wechat",
            "amount": {"total": int((amount * 100).to_integral_value()), "currency": "CNY"},
            "scene_info": {"payer_client_ip": client_ip, "h5_info": {"type": "Wap"}},
        }, ensure_ascii=False)
        headers = {
            "Authorization": WechatPayClient.build_authorization("POST", WechatPayClient.H5_PATH, body),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    f"{settings.WECHAT_API_URL}{WechatPayClient.H5_PATH}",
                    content=body.encode("utf-8"),
                    headers=headers
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"WeChat Pay request failed: {e}")
        if response.status_code != 200:
            raise PaymentProviderError(f"WeChat Pay error {response.status_code}: {response.text[:200]}")
        return response.json()["h5_url"]


class PayPalClient:
    """PayPal Orders API v2."""

    SANDBOX_URL = "https://api-m.sandbox.paypal.com"
    LIVE_URL = "https://api-m.paypal.com"

    @staticmethod
    def base_url() -> str:
        return PayPalClient.LIVE_URL if settings.PAYPAL_MODE in ("live", "production") else PayPalClient.SANDBOX_URL

    @staticmethod
    async def get_access_token(client: httpx.AsyncClient) -> str:
        if not settings.PAYPAL_CLIENT_ID or not settings.PAYPAL_CLIENT_SECRET:
            raise PaymentProviderError("PayPal is not configured")
        response = await client.post(
            f"{PayPalClient.base_url()}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET)
        )
        if response.status_code != 200:
            raise PaymentProviderError(f"PayPal auth error {response.status_code}")
        return response.json()["access_token"]

    @staticmethod
    async def create_order(order_number: str, amount_usd: Decimal, description: str) -> Dict[str, Any]:
        """Создаёт заказ PayPal. Возвращает {id, approval_url}."""
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": order_number,
                "description": description,
                "amount": {"currency_code": "USD", "value": f"{amount_usd:.2f}"},
            }],
            "application_context": {
                "return_url": f"{settings.PUBLIC_BASE_URL}/api/payment/callback/paypal?success=true",
                "cancel_url": f"{settings.PUBLIC_BASE_URL}/api/payment/callback/paypal?success=false",
                "brand_name": settings.APP_NAME,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
            },
        }
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                token = await PayPalClient.get_access_token(client)
                response = await client.post(
                    f"{PayPalClient.base_url()}/v2/checkout/orders",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}", "Prefer": "return=representation"}
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"PayPal request failed: {e}")
        if response.status_code not in (200, 201):
            raise PaymentProviderError(f"PayPal error {response.status_code}: {response.text[:200]}")
        data = response.json()
        approval_url = next(
            (link["href"] for link in data.get("links", []) if link.get("rel") == "approve"),
            None
        )
        return {"id": data["id"], "approval_url": approval_url}

    @staticmethod
    async def capture_order(paypal_order_id: str) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                token = await PayPalClient.get_access_token(client)
                response = await client.post(
                    f"{PayPalClient.base_url()}/v2/checkout/orders/{paypal_order_id}/capture",
                    json={},
                    headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"PayPal request failed: {e}")
        if response.status_code not in (200, 201):
            raise PaymentProviderError(f"PayPal capture error {response.status_code}: {response.text[:200]}")
        return response.json()
