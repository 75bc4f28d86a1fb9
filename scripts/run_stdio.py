#!/usr/bin/env python3
"""
Run the Create Child Tasks MCP server in STDIO mode
Uses your local Azure credentials (az login) or AZURE_DEVOPS_PAT
"""
import sys
import os

# Add the project directory to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from create_child_tasks.server import mcp

if __name__ == "__main__":
    # Run with stdio transport (default for MCP)
    mcp.run()
