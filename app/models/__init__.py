from app.models.audit_log import AuditLog
from app.models.certificate_record import CertificateRecord
from app.models.credit_balance import CreditBalance
from app.models.credit_ledger import CreditTransaction
from app.models.payment_event import PaymentEvent
from app.models.payment_order import PaymentOrder
from app.models.pdf_template import PdfTemplate

__all__ = [
    "AuditLog",
    "CertificateRecord",
    "CreditBalance",
    "CreditTransaction",
    "PaymentEvent",
    "PaymentOrder",
    "PdfTemplate",
]
