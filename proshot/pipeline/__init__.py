"""
Event-Triggered Processing Pipeline

1. Event filter - only image uploads under an owner's uploads folder
2. Metadata resolver - finds the Project Record (bounded retries)
3. Synthesis strategy - remote inference or the local high-fidelity path
4. Artifact writer - public result next to the upload
5. Status state machine - pending -> processing -> completed | error
"""
