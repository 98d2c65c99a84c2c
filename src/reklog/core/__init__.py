"""
Core client components.

This package contains:
- Session registry for start/end correlation
- Data masking engine
- Delivery pipeline to the collector
- Tracker orchestrating the three
- Metrics collection
"""
