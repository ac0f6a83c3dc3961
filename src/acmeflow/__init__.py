"""ACME protocol engine.

Drives the signed requests needed to prove control of domains with
http-01 challenges and to obtain a certificate from an ACME (RFC 8555)
certificate authority.

"""
import logging

__version__ = '1.0.0'

logging.getLogger(__name__).addHandler(logging.NullHandler())
