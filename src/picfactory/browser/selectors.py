"""CSS selector table for the remote web application's UI."""

from __future__ import annotations

LOGIN_CTAS: tuple[str, ...] = (
    'a:has-text("Log in")',
    'button:has-text("Log in")',
    'a:has-text("Sign in")',
    'button:has-text("Sign in")',
    'button:has-text("登录")',
    'a:has-text("登录")',
)
NEW_CHAT_BUTTONS: tuple[str, ...] = (
    'button:has-text("New chat")',
    'a:has-text("New chat")',
    'button:has-text("New conversation")',
    'button:has-text("新聊天")',
    'button[aria-label*="New chat"]',
    'button[data-testid="new-chat-button"]',
)
ATTACH_BUTTONS: tuple[str, ...] = (
    'button[aria-label*="Attach"]',
    'button[aria-label*="Upload"]',
    'button[aria-label*="Add photos"]',
    'button[aria-label*="上传"]',
    'button:has-text("Upload")',
    'button:has-text("上传")',
    'button:has-text("Add photos")',
)
FILE_INPUTS: tuple[str, ...] = ('input[type="file"]',)
COMPOSER_INPUTS: tuple[str, ...] = (
    "textarea#prompt-textarea",
    'textarea[data-testid="prompt-textarea"]',
    'textarea[placeholder*="Message"]',
    'div[contenteditable="true"][role="textbox"]',
    'div[contenteditable="true"][data-lexical-editor="true"]',
)
SEND_BUTTONS: tuple[str, ...] = (
    'button[data-testid="send-button"]',
    'button[aria-label*="Send"]',
    'button[aria-label*="发送"]',
    'button:has-text("Send")',
    'button:has-text("发送")',
    'button:has-text("Create image")',
    'button:has-text("创建图片")',
)
ATTACHMENT_INDICATORS: tuple[str, ...] = (
    'button[aria-label*="Remove attachment"]',
    'button[aria-label*="移除"]',
    'button[data-testid*="remove-attachment"]',
    'img[alt*="Uploaded"]',
    'img[alt*="attachment"]',
)
RESULT_IMAGES: tuple[str, ...] = ("main img", "article img")
DOWNLOAD_BUTTONS: tuple[str, ...] = (
    'button[aria-label*="Download"]',
    'button[aria-label*="下载"]',
    'button:has-text("Download")',
    'button:has-text("下载")',
    "a[download]",
)
