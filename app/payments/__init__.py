"""
Payments app: orchestration and reconciliation of invoice payments.

This app handles:
- Payment creation through the Stripe, Paymob and manual gateways
- Status reconciliation from webhooks, confirm calls and status sync
- Partial and full refunds
- Webhook verification and idempotent processing
- Invoice balance updates (ledger)

Related apps:
    - billing: Account and Invoice models

Usage:
    from payments.services import PaymentOrchestrator, ProcessPaymentParams

    result = PaymentOrchestrator.process_payment(
        ProcessPaymentParams(
            invoice_id=invoice.id,
            account_id=invoice.account_id,
            amount=Decimal("250.00"),
            currency="EGP",
            method="paymob",
            billing_data=billing,
        )
    )
"""
