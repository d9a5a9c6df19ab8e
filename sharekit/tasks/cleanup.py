"""Background task that sweeps OAuth attempts whose callback never arrived"""
import asyncio
import logging

from sharekit.services.oauth_service import XOAuthService

cleanup_logger = logging.getLogger("cleanup")


async def sweep_once(oauth_service: XOAuthService) -> int:
    """Run one sweep, logging instead of raising so the loop keeps going"""
    try:
        return await oauth_service.sweep_expired_challenges()
    except Exception as e:
        cleanup_logger.error(f"Error in PKCE sweep: {e}", exc_info=True)
        return 0


async def pkce_sweep_task(oauth_service: XOAuthService, interval: int):
    """Sweep expired PKCE challenges every ``interval`` seconds until cancelled"""
    cleanup_logger.info(f"PKCE sweep task started (every {interval}s)")
    while True:
        await asyncio.sleep(interval)
        swept = await sweep_once(oauth_service)
        if swept:
            cleanup_logger.info(f"PKCE sweep removed {swept} expired authorization attempt(s)")
