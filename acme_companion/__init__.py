"""Docker ACME Companion.

Watches Docker Swarm services for hostname labels, obtains and renews
Let's Encrypt certificates for them and pushes the results to a proxy.
"""

__version__ = "0.1.0"
__license__ = "MIT"
