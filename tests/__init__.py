"""Test suite for SignalForm.

This package contains tests for:
- Reactive primitives (cells, derived values, effects, batching)
- Field validation engine and field descriptors
- Async validation controller (debounce, cancellation, last-call-wins)
- Dependency resolver (cycle detection, visibility, computed values)
- History manager (undo/redo, checkpoints, size limits)
- Form aggregator and end-to-end scenarios
"""
