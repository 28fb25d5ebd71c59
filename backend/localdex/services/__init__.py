"""Application services spanning several stores."""
