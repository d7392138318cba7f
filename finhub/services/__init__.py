# Services Package
from finhub.services.lifecycle import StateMachine, Transition
from finhub.services.invoice_service import INVOICE_LIFECYCLE, InvoiceTotals, PaymentGuard, payment_guard
from finhub.services.contract_service import CONTRACT_LIFECYCLE
from finhub.services.subscription_service import SUBSCRIPTION_LIFECYCLE
from finhub.services.receivables_service import AgingReport, ReceivableRow, age_receivables, age_by_client
from finhub.services.bulk_import_service import (
    FileSelection, ImportOutcome, ImportWizard, ReviewSet, SelectedFile, WizardStore, wizard_store
)
from finhub.services.list_query import ListQuery

__all__ = [
    'StateMachine',
    'Transition',
    'INVOICE_LIFECYCLE',
    'InvoiceTotals',
    'PaymentGuard',
    'payment_guard',
    'CONTRACT_LIFECYCLE',
    'SUBSCRIPTION_LIFECYCLE',
    'AgingReport',
    'ReceivableRow',
    'age_receivables',
    'age_by_client',
    'FileSelection',
    'ImportOutcome',
    'ImportWizard',
    'ReviewSet',
    'SelectedFile',
    'WizardStore',
    'wizard_store',
    'ListQuery',
]
