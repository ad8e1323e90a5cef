"""
API Routes для оплаты заказов и членства.

Колбэки провайдеров отличаются только проверкой подписи, дальше
всё сводится к PaymentProcessor.
"""

import html
import json
import logging
import time
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from typing import Optional
from urllib.parse import urlencode

from ..config import settings
from ..models.payment import PaymentCreate, MembershipPaymentCreate, MockPaymentCallback, MockMembershipCallback
from ..models.user import User
from ..services.database import DatabaseService, get_db, utc_now, parse_db_time, to_money
from ..services.membership_service import MembershipService
from ..services.order_service import OrderManager, OrderStateError
from ..services.payment_providers import AlipayClient, WechatPayClient, PayPalClient, PaymentProviderError
from ..services.payments import PaymentProcessor, convert_to_usd
from ..services.rate_limiter import get_client_ip
from ..services.system_config import ConfigService
from .auth import get_current_user, get_current_user_optional

logger = logging.getLogger(__name__)

router = APIRouter()


def is_mock_mode() -> bool:
    return settings.PAYMENT_MODE == "mock"


def _result_url(reference: str, status: str) -> str:
    query = urlencode({"order_number": reference, "status": status})
    return f"{settings.FRONTEND_URL}/payment/result?{query}"


async def _ensure_method_enabled(db: DatabaseService, payment_method: str) -> None:
    enabled = await ConfigService.get_value(db, f"payment_{payment_method}_enabled", True)
    if not enabled:
        raise HTTPException(status_code=400, detail="Этот способ оплаты временно недоступен")


async def _create_provider_url(
    payment_method: str,
    reference: str,
    amount,
    subject: str,
    request: Request
) -> str:
    """Ссылка на оплату у провайдера (боевой режим)."""
    try:
        if payment_method == "alipay":
            return AlipayClient.create_page_pay_url(reference, to_money(amount), subject)
        if payment_method == "wechat":
            return await WechatPayClient.create_h5_order(reference, to_money(amount), subject, get_client_ip(request))
        paypal_order = await PayPalClient.create_order(reference, convert_to_usd(amount), subject)
        if not paypal_order["approval_url"]:
            raise PaymentProviderError("PayPal did not return approval link")
        return paypal_order["approval_url"]
    except PaymentProviderError as e:
        logger.error(f"[PAYMENT] {payment_method} create failed for {reference}: {e}")
        raise HTTPException(status_code=502, detail="Платёжная система недоступна, попробуйте позже")


async def _complete_by_reference(
    db: DatabaseService,
    reference: str,
    transaction_id: Optional[str],
    payment_data: dict,
    payment_method: str
) -> bool:
    """
    Завершает оплату по номеру из уведомления провайдера.

    Номера заказов начинаются с ORD, иначе это код членства.
    """
    if reference.startswith("ORD"):
        order = await db.fetch_one("SELECT id FROM orders WHERE order_number = ?", (reference,))
        if not order:
            logger.warning(f"[PAYMENT] Callback for unknown order {reference}")
            return False
        await PaymentProcessor.complete_order_payment(db, order["id"], transaction_id, payment_data)
        return True

    membership = await db.fetch_one(
        "SELECT * FROM memberships WHERE membership_code = ?", (reference,)
    )
    if not membership:
        logger.warning(f"[PAYMENT] Callback for unknown reference {reference}")
        return False
    await MembershipService.complete_payment(db, membership, payment_method)
    return True


async def _fail_by_reference(db: DatabaseService, reference: str, payment_data: dict) -> None:
    if reference.startswith("ORD"):
        order = await db.fetch_one("SELECT id FROM orders WHERE order_number = ?", (reference,))
        if order:
            await PaymentProcessor.fail_order_payment(db, order["id"], payment_data, cancel_order=True)
        return
    membership = await db.fetch_one(
        "SELECT * FROM memberships WHERE membership_code = ?", (reference,)
    )
    if membership:
        await MembershipService.fail_payment(db, membership)


# ==================== Оплата заказа ====================

@router.post("/create")
async def create_payment(
    data: PaymentCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Создаёт платёж по заказу и возвращает ссылку на оплату."""
    order = await db.fetch_one(
        "SELECT * FROM orders WHERE id = ? AND user_id = ?",
        (data.order_id, current_user.id)
    )
    if not order:
        raise HTTPException(status_code=404, detail="Заказ не найден")
    if order["status"] != "pending":
        raise HTTPException(status_code=400, detail="Заказ уже оплачен или отменён")

    expires_at = parse_db_time(order["expires_at"])
    if expires_at and expires_at <= utc_now():
        try:
            await OrderManager.cancel_order(db, order)
        except OrderStateError as e:
            logger.info(f"[PAYMENT] Expired order {order['order_number']} not cancelled: {e}")
        raise HTTPException(status_code=400, detail="Время оплаты заказа истекло, заказ отменён")

    await _ensure_method_enabled(db, data.payment_method)
    payment = await PaymentProcessor.prepare_payment(db, order, data.payment_method)

    if is_mock_mode():
        payment_url = f"/api/payment/mock?payment_id={payment['id']}"
    else:
        payment_url = await _create_provider_url(
            data.payment_method, order["order_number"], order["total_amount"],
            f"{settings.APP_NAME} {order['order_number']}", request
        )

    logger.info(f"[PAYMENT] Payment #{payment['id']} created for order {order['order_number']} via {data.payment_method}")
    return {
        "payment_id": payment["id"],
        "payment_url": payment_url,
        "amount": payment["amount"],
        "currency": payment["currency"],
    }


MOCK_PAGE = """<!DOCTYPE html>
<html lang="zh-CN">
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; max-width: 480px; margin: 40px auto;">
  <h2>{title}</h2>
  <p>{subject}</p>
  <p>Сумма: <strong>{amount} {currency}</strong></p>
  <button onclick="pay('success')">Оплатить</button>
  <button onclick="pay('failed')">Отказаться</button>
  <p id="result"></p>
  <script>
    async function pay(status) {{
      const response = await fetch("{callback}", {{
        method: "POST",
        headers: {{"Content-Type": "application/json"}},
        body: JSON.stringify(Object.assign({payload}, {{status: status}}))
      }});
      document.getElementById("result").textContent = response.ok ? status : "error";
    }}
  </script>
</body>
</html>"""


def _require_mock_mode() -> None:
    if not is_mock_mode():
        raise HTTPException(status_code=403, detail="Тестовая оплата отключена")


@router.get("/mock", response_class=HTMLResponse)
async def mock_payment_page(
    payment_id: int = Query(...),
    db: DatabaseService = Depends(get_db)
):
    """Страница тестовой оплаты."""
    _require_mock_mode()
    payment = await db.fetch_one(
        """SELECT p.*, o.order_number FROM payments p
           JOIN orders o ON o.id = p.order_id
           WHERE p.id = ?""",
        (payment_id,)
    )
    if not payment:
        raise HTTPException(status_code=404, detail="Платёж не найден")

    return MOCK_PAGE.format(
        title="Тестовая оплата",
        subject=html.escape(f"Заказ {payment['order_number']}"),
        amount=payment["amount"],
        currency=payment["currency"],
        callback="/api/payment/callback",
        payload=json.dumps({"payment_id": payment["id"], "order_number": payment["order_number"]}),
    )


@router.post("/callback")
async def mock_payment_callback(
    data: MockPaymentCallback,
    db: DatabaseService = Depends(get_db)
):
    """Результат тестовой оплаты."""
    _require_mock_mode()
    payment = await db.fetch_one(
        """SELECT p.*, o.order_number FROM payments p
           JOIN orders o ON o.id = p.order_id
           WHERE p.id = ?""",
        (data.payment_id,)
    )
    if not payment or payment["order_number"] != data.order_number:
        raise HTTPException(status_code=404, detail="Платёж не найден")

    if data.status == "success":
        await PaymentProcessor.complete_order_payment(
            db, payment["order_id"], f"MOCK_{int(time.time() * 1000)}", {"mode": "mock"}
        )
    else:
        await PaymentProcessor.fail_order_payment(db, payment["order_id"], {"mode": "mock"})

    order = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (payment["order_id"],))
    return {"success": data.status == "success", "order": order}


# ==================== Колбэки провайдеров ====================

@router.post("/callback/alipay")
async def alipay_notify(request: Request, db: DatabaseService = Depends(get_db)):
    """Асинхронное уведомление Alipay. Ответ: success / fail."""
    form = await request.form()
    params = {key: value for key, value in form.items()}

    if not AlipayClient.verify(params):
        logger.warning(f"[PAYMENT] Alipay signature invalid for {params.get('out_trade_no')}")
        return PlainTextResponse("fail")

    reference = params.get("out_trade_no", "")
    trade_status = params.get("trade_status")
    try:
        if trade_status in ("TRADE_SUCCESS", "TRADE_FINISHED"):
            await _complete_by_reference(db, reference, params.get("trade_no"), params, "alipay")
        elif trade_status == "TRADE_CLOSED":
            await _fail_by_reference(db, reference, params)
    except Exception as e:
        logger.exception(f"[PAYMENT] Alipay callback processing error for {reference}: {e}")
        return PlainTextResponse("fail")

    return PlainTextResponse("success")


@router.get("/callback/alipay")
async def alipay_return(request: Request):
    """Возврат покупателя со страницы Alipay."""
    params = dict(request.query_params)
    status = "success" if AlipayClient.verify(params) else "unknown"
    return RedirectResponse(_result_url(params.get("out_trade_no", ""), status), status_code=302)


@router.post("/callback/wechat")
async def wechat_notify(request: Request, db: DatabaseService = Depends(get_db)):
    """Уведомление WeChat Pay v3. Ответ: {"code": SUCCESS|FAIL}."""
    body = (await request.body()).decode("utf-8")
    headers = request.headers

    if not WechatPayClient.verify_callback(
        headers.get("wechatpay-timestamp", ""),
        headers.get("wechatpay-nonce", ""),
        body,
        headers.get("wechatpay-signature", ""),
    ):
        logger.warning(f"[PAYMENT] WeChat signature invalid (serial {headers.get('wechatpay-serial')})")
        return JSONResponse({"code": "FAIL", "message": "签名验证失败"}, status_code=401)

    try:
        notification = json.loads(body)
        transaction = WechatPayClient.decrypt_resource(notification["resource"])
    except (ValueError, KeyError, PaymentProviderError) as e:
        logger.error(f"[PAYMENT] WeChat notification decode error: {e}")
        return JSONResponse({"code": "FAIL", "message": "解密失败"}, status_code=400)

    reference = transaction.get("out_trade_no", "")
    try:
        if transaction.get("trade_state") == "SUCCESS":
            await _complete_by_reference(db, reference, transaction.get("transaction_id"), transaction, "wechat")
        elif transaction.get("trade_state") in ("CLOSED", "PAYERROR"):
            await _fail_by_reference(db, reference, transaction)
    except Exception as e:
        logger.exception(f"[PAYMENT] WeChat callback processing error for {reference}: {e}")
        return JSONResponse({"code": "FAIL", "message": "处理失败"}, status_code=500)

    return {"code": "SUCCESS", "message": "成功"}


@router.get("/callback/paypal")
async def paypal_return(
    token: Optional[str] = None,
    success: str = "true",
    db: DatabaseService = Depends(get_db)
):
    """Возврат покупателя с PayPal: захват платежа и переход на страницу результата."""
    if success.lower() == "false" or not token:
        return RedirectResponse(f"{settings.FRONTEND_URL}/payment/cancel", status_code=302)

    try:
        capture = await PayPalClient.capture_order(token)
    except PaymentProviderError as e:
        logger.error(f"[PAYMENT] PayPal capture failed for {token}: {e}")
        return RedirectResponse(_result_url("", "failed"), status_code=302)

    units = capture.get("purchase_units") or [{}]
    reference = units[0].get("reference_id", "")
    if capture.get("status") == "COMPLETED":
        captures = (units[0].get("payments") or {}).get("captures") or [{}]
        await _complete_by_reference(db, reference, captures[0].get("id") or token, capture, "paypal")
        return RedirectResponse(_result_url(reference, "success"), status_code=302)

    logger.warning(f"[PAYMENT] PayPal order {token} status {capture.get('status')}")
    return RedirectResponse(_result_url(reference, "pending"), status_code=302)


# ==================== Оплата членства ====================

async def _get_membership_or_404(db: DatabaseService, membership_id: int) -> dict:
    membership = await db.fetch_one("SELECT * FROM memberships WHERE id = ?", (membership_id,))
    if not membership:
        raise HTTPException(status_code=404, detail="Членство не найдено")
    return membership


@router.post("/create-membership")
async def create_membership_payment(
    data: MembershipPaymentCreate,
    request: Request,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Ссылка на оплату членства."""
    membership = await _get_membership_or_404(db, data.membership_id)
    if membership["user_id"] and (not current_user or current_user.id != membership["user_id"]):
        raise HTTPException(status_code=404, detail="Членство не найдено")
    if membership["payment_status"] == "completed":
        raise HTTPException(status_code=400, detail="Членство уже оплачено")

    await _ensure_method_enabled(db, data.payment_method)

    if is_mock_mode():
        query = urlencode({"membership_id": membership["id"], "method": data.payment_method})
        payment_url = f"/api/payment/mock-membership?{query}"
    else:
        payment_url = await _create_provider_url(
            data.payment_method, membership["membership_code"], membership["purchase_price"],
            f"{settings.APP_NAME} membership", request
        )

    amount = to_money(membership["purchase_price"])
    currency = "CNY"
    if data.payment_method == "paypal":
        amount, currency = convert_to_usd(amount), "USD"

    return {
        "membership_id": membership["id"],
        "payment_url": payment_url,
        "amount": float(amount),
        "currency": currency,
    }


@router.get("/mock-membership", response_class=HTMLResponse)
async def mock_membership_page(
    membership_id: int = Query(...),
    method: str = Query("alipay", pattern="^(alipay|wechat|paypal)$"),
    db: DatabaseService = Depends(get_db)
):
    _require_mock_mode()
    membership = await _get_membership_or_404(db, membership_id)
    snapshot = json.loads(membership["plan_snapshot"] or "{}")

    return MOCK_PAGE.format(
        title="Тестовая оплата членства",
        subject=html.escape(f"{snapshot.get('name', '')} ({method})"),
        amount=membership["purchase_price"],
        currency="CNY",
        callback="/api/payment/membership-callback",
        payload=json.dumps({
            "membership_id": membership["id"],
            "membership_code": membership["membership_code"],
        }),
    )


@router.post("/membership-callback")
async def mock_membership_callback(
    data: MockMembershipCallback,
    db: DatabaseService = Depends(get_db)
):
    """Результат тестовой оплаты членства."""
    _require_mock_mode()
    membership = await _get_membership_or_404(db, data.membership_id)
    if membership["membership_code"] != data.membership_code.strip().upper():
        raise HTTPException(status_code=400, detail="Код членства не совпадает")

    if data.status == "success":
        membership = await MembershipService.complete_payment(db, membership, "mock")
    else:
        membership = await MembershipService.fail_payment(db, membership)

    return {"success": data.status == "success", "membership": membership}
