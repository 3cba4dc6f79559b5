"""
Billing application.

Holds the customer-facing entities that payments settle against:
- Account: the paying customer
- Invoice: an amount owed by an account, with paid/balance tracking

Only the payments ledger mutates Invoice.paid_amount, balance_due and status.
"""
