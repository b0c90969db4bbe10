"""pmcrms.integrations — External service gateway modules.

All outbound HTTP calls go through a gateway in this package, never via
bare `requests` calls in services or blueprints. Every gateway accepts an
injected `requests.Session` so tests can intercept calls.

Current gateways:
  hsm_gateway.HSMGateway         — signing OTP + PDF signing (eMas HSM)
  payment_gateway.PaymentGateway — licence-fee order creation
"""
