"""Output conversion: translated PDF generation."""
