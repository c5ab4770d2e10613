"""
martpos/engine
--------------
Framework-free billing core: money/tax helpers, the sale calculator,
the checkout coordinator and the receipt formatter. Nothing in here
imports Flask or touches the database directly.
"""
