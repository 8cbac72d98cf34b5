"""
API依赖项 - 服务装配

网关客户端在应用生命周期内创建（app.state.payment_gateway），
每个请求只装配轻量的服务对象。
"""
from functools import lru_cache

from fastapi import Depends, Request

from application.ports.payment_gateway import PaymentGateway
from application.services.order_service import OrderLifecycleService
from core.settings import payment_settings
from domain.payment.plan import PlanCatalog, default_catalog
from domain.payment.signature import SignatureVerifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def get_plan_catalog() -> PlanCatalog:
    return default_catalog


@lru_cache
def get_signature_verifier() -> SignatureVerifier:
    """缺少 key_secret 时抛 ValueError，启动阶段即失败"""
    return SignatureVerifier(
        payment_settings.razorpay.key_secret or "",
        webhook_secret=payment_settings.razorpay.webhook_secret,
    )


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


async def get_order_service(
    gateway: PaymentGateway = Depends(get_payment_gateway),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> OrderLifecycleService:
    return OrderLifecycleService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway=gateway,
        verifier=verifier,
        catalog=catalog,
        gateway_timeout=payment_settings.timeouts.gateway,
        store_timeout=payment_settings.timeouts.store,
        receipt_prefix=payment_settings.receipt_prefix,
    )
