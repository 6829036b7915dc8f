from rfpdesk.models.rfp import RFP, RFPVendor
from rfpdesk.models.vendor import Vendor
from rfpdesk.models.proposal import Proposal
from rfpdesk.models.inbound_email import InboundEmail

__all__ = ["RFP", "RFPVendor", "Vendor", "Proposal", "InboundEmail"]
