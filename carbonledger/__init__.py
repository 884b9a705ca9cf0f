"""
CarbonLedger: Emissions Accounting Engine
=========================================

Greenhouse gas calculation and aggregation for ESG and carbon-accounting
applications. The engine lives in ``carbonledger.emissions_engine``; the
``carbonledger`` command line tool is in ``carbonledger.cli``.
"""

from ._version import __version__

__author__ = "CarbonLedger Team"
__license__ = "MIT"

__all__ = ["__version__"]
