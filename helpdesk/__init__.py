"""IT helpdesk ticket intake and resolution."""
