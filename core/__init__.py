"""Core (UI-agnostic) quarter chart logic.

This package contains:
- data loading (XLSX -> pandas) and quarter/category aggregation
- user preferences (colors, category order) with published defaults
- view state, playback timer and the chart controller
- chart layout/transition plans and Altair -> Vega-Lite output
"""
