import json
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Header, Query, Request, status

from vsend.exceptions import (
    InvalidWebhookSignatureError,
    PaymentVerificationError,
    ReceiptNotFoundError,
    UserNotFoundError,
)
from vsend.models import TransactionStatus, TransactionType
from vsend.schemas import (
    AccountResponse,
    PaymentCreate,
    PinChangeRequest,
    PinSetupRequest,
    PinStatusResponse,
    ReceiptResponse,
    RecipientResponse,
    RegistrationResponse,
    TopUpCreate,
    TopUpResponse,
    TransactionResponse,
    TransferCreate,
    UserCreate,
    UserResponse,
    WithdrawalCreate,
)
from vsend.services.container import Services

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


# Users

@router.post("/users", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_user(payload: UserCreate, services: Services = Depends(get_services)):
    user, account = await services.wallet.register(
        payload.phone_number, payload.first_name, payload.last_name, payload.email
    )
    return RegistrationResponse(
        user=UserResponse.model_validate(user),
        account=AccountResponse.model_validate(account),
    )

@router.get("/users/{user_id}/account", response_model=AccountResponse)
async def get_user_account(user_id: UUID, services: Services = Depends(get_services)):
    return await services.wallet.ensure_account(user_id)

@router.get("/users/{user_id}/receipts", response_model=List[ReceiptResponse])
async def list_user_receipts(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    user = await services.directory.get_user(user_id)
    if user is None:
        raise UserNotFoundError()
    return await services.receipts.list_for_phone(user.phone_number, limit=limit, offset=offset)

@router.get("/recipients/{phone_number}", response_model=RecipientResponse)
async def lookup_recipient(phone_number: str, services: Services = Depends(get_services)):
    return await services.wallet.lookup_recipient(phone_number)

# PIN

@router.post("/pin/setup", response_model=PinStatusResponse, status_code=status.HTTP_201_CREATED)
async def setup_pin(payload: PinSetupRequest, services: Services = Depends(get_services)):
    if await services.directory.get_user(payload.user_id) is None:
        raise UserNotFoundError()
    await services.vault.setup(payload.user_id, payload.pin, payload.confirm_pin)
    return PinStatusResponse(user_id=payload.user_id, is_pin_set=True)

@router.post("/pin/change", response_model=PinStatusResponse)
async def change_pin(payload: PinChangeRequest, services: Services = Depends(get_services)):
    await services.vault.change(payload.user_id, payload.old_pin, payload.new_pin, payload.confirm_pin)
    return PinStatusResponse(user_id=payload.user_id, is_pin_set=True)

@router.get("/pin/{user_id}", response_model=PinStatusResponse)
async def get_pin_status(user_id: UUID, services: Services = Depends(get_services)):
    return PinStatusResponse(user_id=user_id, is_pin_set=await services.vault.has_credential(user_id))

# Ledger

@router.get("/accounts/{account_id}/transactions", response_model=List[TransactionResponse])
async def list_account_transactions(
    account_id: UUID,
    txn_type: Optional[TransactionType] = Query(None, alias="type"),
    txn_status: Optional[TransactionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    return await services.ledger.list_transactions(
        account_id, txn_type=txn_type, status=txn_status, limit=limit, offset=offset
    )

@router.post("/transfers", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transfer(payload: TransferCreate, services: Services = Depends(get_services)):
    return await services.wallet.send_money(
        payload.user_id, payload.to_phone_number, payload.amount, payload.description, payload.pin
    )

@router.post("/payments", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(payload: PaymentCreate, services: Services = Depends(get_services)):
    return await services.wallet.make_payment(
        payload.user_id, payload.merchant_phone, payload.amount, payload.description, payload.pin
    )

# Gateway flows

@router.post("/topups", response_model=TopUpResponse, status_code=status.HTTP_201_CREATED)
async def create_top_up(payload: TopUpCreate, services: Services = Depends(get_services)):
    return await services.wallet.initiate_top_up(
        payload.user_id, payload.amount, payload.pin, payload.description
    )

@router.post("/topups/{reference}/verify", response_model=TransactionResponse)
async def verify_top_up(reference: str, services: Services = Depends(get_services)):
    return await services.wallet.complete_top_up(reference)

@router.post("/withdrawals", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_withdrawal(payload: WithdrawalCreate, services: Services = Depends(get_services)):
    return await services.wallet.withdraw(
        payload.user_id,
        payload.amount,
        payload.bank_code,
        payload.account_number,
        payload.pin,
        account_name=payload.account_name,
        description=payload.description,
    )

@router.get("/banks")
async def list_banks(services: Services = Depends(get_services)):
    return await services.wallet.list_banks()

@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
):
    body = await request.body()
    if not services.gateway.verify_webhook_signature(body, x_paystack_signature):
        raise InvalidWebhookSignatureError()
    try:
        event = json.loads(body)
    except ValueError:
        raise PaymentVerificationError("Malformed webhook payload")
    await services.wallet.handle_webhook(event)
    return {"status": "ok"}

# Receipts

@router.get("/receipts/{receipt_number}", response_model=ReceiptResponse)
async def get_receipt(receipt_number: str, services: Services = Depends(get_services)):
    receipt = await services.receipts.get_by_number(receipt_number)
    if receipt is None:
        raise ReceiptNotFoundError()
    return receipt

@router.get("/transactions/{transaction_id}/receipt", response_model=ReceiptResponse)
async def get_transaction_receipt(transaction_id: UUID, services: Services = Depends(get_services)):
    receipt = await services.receipts.get_by_transaction(transaction_id)
    if receipt is None:
        raise ReceiptNotFoundError()
    return receipt
