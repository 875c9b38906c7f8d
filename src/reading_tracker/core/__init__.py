"""Cross-cutting helpers shared by the capture graph and session controller."""
