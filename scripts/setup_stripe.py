import stripe
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Initialize Stripe
stripe.api_key = os.getenv('STRIPE_SECRET_KEY')

PLUS_PRICE_CENTS = 399  # $3.99


def create_plus_product_and_price():
    """Create the Plus subscription product and its monthly price in Stripe"""
    try:
        plus_product = stripe.Product.create(
            name="Budget Buckets Plus",
            description="Unlimited budget buckets",
            metadata={
                "plan": "plus"
            }
        )

        plus_price = stripe.Price.create(
            product=plus_product.id,
            unit_amount=PLUS_PRICE_CENTS,
            currency="usd",
            recurring={
                "interval": "month"
            },
            metadata={
                "plan": "plus",
                "bucket_limit": "unlimited"
            }
        )

        print("✅ Product and price created successfully!")
        print("\nPlus Plan ($3.99/month):")
        print(f"Product ID: {plus_product.id}")
        print(f"Price ID: {plus_price.id}")

        # Update .env file with the new price ID
        if os.path.exists('.env'):
            with open('.env', 'r') as f:
                env_lines = f.readlines()
        else:
            env_lines = []

        written = False
        with open('.env', 'w') as f:
            for line in env_lines:
                if line.startswith('STRIPE_PLUS_PRICE_ID='):
                    f.write(f'STRIPE_PLUS_PRICE_ID={plus_price.id}\n')
                    written = True
                else:
                    f.write(line)
            if not written:
                f.write(f'STRIPE_PLUS_PRICE_ID={plus_price.id}\n')

        print("\n✅ .env file updated with the Plus price ID")

    except stripe.StripeError as e:
        print(f"❌ Error creating product and price: {str(e)}")


if __name__ == "__main__":
    create_plus_product_and_price()
