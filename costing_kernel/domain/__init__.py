"""Pure domain types: clock, business-day dates, DTOs."""
