"""memoplane CLI."""
